import base64, json, os
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_LEN = 12

_OAEP = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()),
                     algorithm=hashes.SHA256(),
                     label=None)


class CryptoError(Exception):
    """Raised when an encrypted body cannot be opened (bad key, tampered data, bad shape)."""


def b64(b: bytes) -> str:
    ''' This function encodes bytes to a Base64 string '''
    return base64.b64encode(b).decode()


def b64d(s: str) -> bytes:
    ''' This function decodes a Base64 string to bytes '''
    return base64.b64decode(s.encode())


def rsa_generate(bits: int = 2048):
    ''' The function generates the server's RSA private key used only for the session key exchange '''
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def rsa_public_pem(priv) -> str:
    ''' The function returns the PEM text of the public half of an RSA private key '''
    pem = priv.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return pem.decode()


def rsa_wrap_key(pub_pem: str, key_bytes: bytes) -> str:
    '''
    This function wraps a session key for the server.
    Input:
        - pub_pem: server RSA public key (PEM)
        - key_bytes: AES session key
    Output: Base64 string of the RSA-OAEP ciphertext
    '''
    pub = serialization.load_pem_public_key(pub_pem.encode())
    return b64(pub.encrypt(key_bytes, _OAEP))


def rsa_unwrap_key(priv, wrapped_b64: str) -> bytes:
    ''' This function recovers a session key wrapped with rsa_wrap_key '''
    try:
        return priv.decrypt(b64d(wrapped_b64), _OAEP)
    except (ValueError, TypeError, AttributeError) as e:
        raise CryptoError("cannot unwrap session key") from e


def aes_key() -> bytes:
    '''This function generates a random 256-bit AES session key'''
    return AESGCM.generate_key(bit_length=256)


def encrypt_body(key: bytes, body: Dict[str, Any]) -> Dict[str, Any]:
    '''
    This function seals a JSON-serialisable body with AES-GCM.
    Input:
        - key: AES session key
        - body: dictionary to protect
    Output: {"enc": {"n": nonce, "c": ciphertext+tag}} with Base64 values
    '''
    nonce = os.urandom(NONCE_LEN)
    plaintext = json.dumps(body, ensure_ascii=False).encode()
    ct = AESGCM(key).encrypt(nonce, plaintext, None)
    return {"enc": {"n": b64(nonce), "c": b64(ct)}}


def decrypt_body(key: bytes, payload: Dict[str, Any]) -> Dict[str, Any]:
    '''
    This function opens a payload produced by encrypt_body.
    Raises CryptoError when the payload is malformed or fails authentication.
    '''
    try:
        enc = payload["enc"]
        data = AESGCM(key).decrypt(b64d(enc["n"]), b64d(enc["c"]), None)
        return json.loads(data.decode())
    except (KeyError, TypeError, ValueError, AttributeError, InvalidTag) as e:
        raise CryptoError("cannot decrypt body") from e
