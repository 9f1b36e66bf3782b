"""Cloudflare tunnels, DNS and the preview gate worker."""
