"""tarball-serve: Nix Lockable Tarball Protocol gateway in front of an S3 bucket."""

__version__ = "0.1.0"
