"""MailMirror: change monitoring for desktop mail client folders."""

__version__ = "0.1.0"
