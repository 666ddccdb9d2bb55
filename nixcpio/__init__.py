"""Build, cache and stream a Nix store closure as concatenated CPIO archives."""

__version__ = "0.3.3"