"""cloudxfer - Move files to and from an S3-gateway backed file service."""

__version__ = "2.1.0"
