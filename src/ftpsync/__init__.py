"""ftpsync - keep a local folder and an FTP folder in sync."""

__version__ = "0.1.0"
