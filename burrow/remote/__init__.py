"""SSH transport and keypair generation."""
