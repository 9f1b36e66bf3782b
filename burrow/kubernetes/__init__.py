"""k3s installation, image builds and kubectl helpers for releases."""
