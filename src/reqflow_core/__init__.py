"""ReqFlow Core - requirements management API with live change streams."""

__version__ = "1.0.0"
