from .http_transport import DeliveryError, HttpTransport, post_event

__all__ = ["DeliveryError", "HttpTransport", "post_event"]
