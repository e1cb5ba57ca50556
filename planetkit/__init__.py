"""Node tooling for a containerised Kubernetes runtime: resolv.conf, retries, flags, configuration, DNS service objects, rootfs tarballs and registry image import."""

__version__ = "0.1.0"