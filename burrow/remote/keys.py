"""SSH keypair generation for workloads."""
from typing import NamedTuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


KEY_SIZE = 4096


class Keypair(NamedTuple):
    private_key: str
    public_key: str


def generate_keypair(comment: str | None = None, key_size: int = KEY_SIZE) -> Keypair:
    """Generate an RSA keypair.

    Args:
        comment: Appended to the OpenSSH public key line.
        key_size: RSA modulus size in bits.

    Returns:
        PEM private key and ``ssh-rsa ... comment`` public key.
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public = key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode()
    if comment:
        public = f"{public} {comment}"
    return Keypair(private_key=private_pem, public_key=public)
