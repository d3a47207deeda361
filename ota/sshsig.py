# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
OpenSSH signature (SSHSIG) verification helpers.

Release archives of avbroot and Custota ship with a detached ``.sig`` file
produced by ``ssh-keygen -Y sign``. This module parses the armored signature,
checks it was made by the pinned Ed25519 key and verifies it over the file.

Functions:
- parse_public_key: decode an OpenSSH ``ssh-ed25519`` public key line.
- parse_signature: decode an armored SSHSIG blob.
- signed_data: build the byte string the signature covers.
- verify_file: verify a file against its detached signature.
"""

from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass
from pathlib import Path

from Crypto.Hash import SHA256, SHA512
from Crypto.Signature import eddsa

from .errors import IntegrityError

MAGIC = b"SSHSIG"
SIG_VERSION = 1
ARMOR_BEGIN = "-----BEGIN SSH SIGNATURE-----"
ARMOR_END = "-----END SSH SIGNATURE-----"
KEY_TYPE = b"ssh-ed25519"

_HASHES = {"sha256": SHA256, "sha512": SHA512}


@dataclass(frozen=True)
class SshSignature:
    """Decoded SSHSIG blob.

    Attributes:
        public_key: Wire-format public key blob of the signer.
        namespace: Namespace the signature was created for (e.g. "file").
        hash_algorithm: "sha256" or "sha512".
        signature: Raw 64-byte Ed25519 signature.
    """

    public_key: bytes
    namespace: str
    hash_algorithm: str
    signature: bytes


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise ValueError("truncated signature blob")
        out = self.data[self.pos : self.pos + n]
        self.pos += n
        return out

    def uint32(self) -> int:
        return struct.unpack(">I", self.take(4))[0]

    def string(self) -> bytes:
        return self.take(self.uint32())


def ssh_string(value: bytes) -> bytes:
    """Encode bytes as an SSH wire-format string (uint32 length + data)."""
    return struct.pack(">I", len(value)) + value


def parse_public_key(line: str) -> bytes:
    """
    Decode an OpenSSH public key line into its wire-format blob.

    Args:
        line: e.g. ``"ssh-ed25519 AAAAC3Nza... comment"``.

    Returns:
        The decoded key blob (``string "ssh-ed25519" || string key``).

    Raises:
        ValueError: If the line is not a well-formed ssh-ed25519 key.
    """
    parts = line.split()
    if len(parts) < 2 or parts[0] != KEY_TYPE.decode():
        raise ValueError("expected an ssh-ed25519 public key")
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except binascii.Error as exc:
        raise ValueError("public key is not valid base64") from exc
    reader = _Reader(blob)
    if reader.string() != KEY_TYPE or len(reader.string()) != 32:
        raise ValueError("malformed ssh-ed25519 key blob")
    return blob


def _raw_ed25519(key_blob: bytes) -> bytes:
    reader = _Reader(key_blob)
    reader.string()
    return reader.string()


def parse_signature(armored: str) -> SshSignature:
    """
    Decode an armored SSHSIG signature.

    Args:
        armored: Content of the ``.sig`` file.

    Returns:
        SshSignature: The decoded fields.

    Raises:
        ValueError: If the armor, magic, version or key type is unexpected.
    """
    text = armored.strip()
    if not text.startswith(ARMOR_BEGIN) or not text.endswith(ARMOR_END):
        raise ValueError("missing SSH SIGNATURE armor")
    body = "".join(text[len(ARMOR_BEGIN) : -len(ARMOR_END)].split())
    try:
        blob = base64.b64decode(body, validate=True)
    except binascii.Error as exc:
        raise ValueError("signature body is not valid base64") from exc

    reader = _Reader(blob)
    if reader.take(len(MAGIC)) != MAGIC:
        raise ValueError("bad SSHSIG magic")
    if reader.uint32() != SIG_VERSION:
        raise ValueError("unsupported SSHSIG version")
    public_key = reader.string()
    namespace = reader.string().decode()
    reader.string()  # reserved
    hash_algorithm = reader.string().decode()

    sig_reader = _Reader(reader.string())
    if sig_reader.string() != KEY_TYPE:
        raise ValueError("only ssh-ed25519 signatures are supported")
    signature = sig_reader.string()
    return SshSignature(public_key, namespace, hash_algorithm, signature)


def file_digest(path: Path, hash_algorithm: str) -> bytes:
    """Hash a file in chunks with the given SSHSIG hash algorithm."""
    try:
        h = _HASHES[hash_algorithm].new()
    except KeyError as exc:
        raise ValueError(f"unsupported hash algorithm {hash_algorithm}") from exc
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.digest()


def signed_data(namespace: str, hash_algorithm: str, digest: bytes) -> bytes:
    """
    Build the message covered by an SSHSIG signature.

    Args:
        namespace: Signature namespace.
        hash_algorithm: Name of the hash used for ``digest``.
        digest: Hash of the signed file.

    Returns:
        ``MAGIC || string(namespace) || string("") || string(hash) || string(digest)``.
    """
    return (
        MAGIC
        + ssh_string(namespace.encode())
        + ssh_string(b"")
        + ssh_string(hash_algorithm.encode())
        + ssh_string(digest)
    )


def verify_file(path: Path, sig_path: Path, pinned_key: str, namespace: str = "file") -> None:
    """
    Verify ``path`` against its detached SSHSIG signature.

    Args:
        path: File that was signed.
        sig_path: Armored ``.sig`` file.
        pinned_key: OpenSSH public key line the signature must be made with.
        namespace: Expected signature namespace.

    Raises:
        IntegrityError: On any parsing or verification failure.
    """
    try:
        expected_key = parse_public_key(pinned_key)
        sig = parse_signature(Path(sig_path).read_text(encoding="ascii"))
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        raise IntegrityError(str(path), str(exc)) from exc

    if sig.public_key != expected_key:
        raise IntegrityError(str(path), "signed by an unexpected key")
    if sig.namespace != namespace:
        raise IntegrityError(str(path), f"unexpected namespace '{sig.namespace}'")

    try:
        digest = file_digest(path, sig.hash_algorithm)
        verifier = eddsa.new(eddsa.import_public_key(_raw_ed25519(expected_key)), "rfc8032")
        verifier.verify(signed_data(namespace, sig.hash_algorithm, digest), sig.signature)
    except (OSError, ValueError) as exc:
        raise IntegrityError(str(path), str(exc) or "bad signature") from exc
