import ipaddress
import os
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from keynginx.config import config
from keynginx.errors import GenerationError, StorageError, ValidationError
from keynginx.output import Output

PEM_BLOCK = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----")


@dataclass(frozen=True)
class CertificateRequest:
  domain: str
  key_size: int = 2048
  validity_days: int = 365
  country: str = ""
  state: str = ""
  city: str = ""
  organization: str = ""
  unit: str = ""
  email: str = ""

  def validate(self):
    """Reject bad parameters before anything is generated or written"""
    if not self.domain:
      raise ValidationError("domain is required")
    if not isinstance(self.domain, str):
      raise ValidationError(f"domain must be a string (got {self.domain!r})")
    for name in ("key_size", "validity_days"):
      value = getattr(self, name)
      if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer (got {value!r})")
    if self.key_size not in config.key_sizes:
      sizes = ", ".join(str(s) for s in config.key_sizes)
      raise ValidationError(f"invalid key size {self.key_size} (must be {sizes})")
    if self.validity_days <= 0:
      raise ValidationError(f"validity days must be positive (got {self.validity_days})")
    if self.validity_days > config.max_validity_days:
      raise ValidationError(
        f"validity days too high {self.validity_days} (maximum {config.max_validity_days})"
      )
    if self.country and (len(self.country) != 2 or not self.country.isalpha()):
      raise ValidationError(f"country must be a 2 letter code (got '{self.country}')")

  def subject(self) -> x509.Name:
    parts = [
      (NameOID.COUNTRY_NAME, self.country),
      (NameOID.STATE_OR_PROVINCE_NAME, self.state),
      (NameOID.LOCALITY_NAME, self.city),
      (NameOID.ORGANIZATION_NAME, self.organization),
      (NameOID.ORGANIZATIONAL_UNIT_NAME, self.unit),
      (NameOID.COMMON_NAME, self.domain),
    ]
    return x509.Name([x509.NameAttribute(oid, value) for oid, value in parts if value])

  def alt_names(self) -> list[x509.GeneralName]:
    names: list[x509.GeneralName] = [x509.DNSName(self.domain)]
    if self.domain == "localhost":
      names += [
        x509.DNSName("127.0.0.1"),
        x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
        x509.IPAddress(ipaddress.IPv6Address("::1")),
      ]
    else:
      names.append(x509.DNSName(f"*.{self.domain}"))
    if self.email:
      names.append(x509.RFC822Name(self.email))
    return names


@dataclass(frozen=True)
class KeyPair:
  private_key: rsa.RSAPrivateKey
  certificate: x509.Certificate
  private_key_pem: bytes
  certificate_pem: bytes


@dataclass(frozen=True)
class CertificateInfo:
  subject: str
  issuer: str
  not_before: datetime
  not_after: datetime
  dns_names: list[str] = field(default_factory=list)
  ip_addresses: list[str] = field(default_factory=list)
  email_addresses: list[str] = field(default_factory=list)
  is_expired: bool = False
  days_until_expiry: int = 0


##
# Self-signed key/certificate generation
##
class CertificateGenerator:
  """Produce, store and inspect the project's TLS identity"""

  def __init__(self):
    self.output = Output()

  def generate_key_pair(self, request: CertificateRequest) -> KeyPair:
    self.output.debug(f"Generating {request.key_size}-bit RSA key for {request.domain}")
    try:
      private_key = rsa.generate_private_key(public_exponent=65537, key_size=request.key_size)
    except (ValueError, TypeError) as e:
      raise GenerationError(f"failed to generate RSA private key: {e}") from e

    now = datetime.now(timezone.utc).replace(microsecond=0)
    name = request.subject()

    # Serial is seconds since epoch, two requests in the same second collide
    builder = (
      x509.CertificateBuilder()
      .subject_name(name)
      .issuer_name(name)
      .public_key(private_key.public_key())
      .serial_number(int(time.time()))
      .not_valid_before(now)
      .not_valid_after(now + timedelta(days=request.validity_days))
      .add_extension(
        x509.KeyUsage(
          digital_signature=True, content_commitment=False, key_encipherment=True,
          data_encipherment=False, key_agreement=False, key_cert_sign=False,
          crl_sign=False, encipher_only=False, decipher_only=False,
        ),
        critical=True,
      )
      .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
      .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
      .add_extension(x509.SubjectAlternativeName(request.alt_names()), critical=False)
    )

    try:
      signed = builder.sign(private_key=private_key, algorithm=hashes.SHA256())
    except (ValueError, TypeError) as e:
      raise GenerationError(f"failed to create certificate: {e}") from e

    cert_der = signed.public_bytes(serialization.Encoding.DER)
    try:
      certificate = x509.load_der_x509_certificate(cert_der)
    except ValueError as e:
      raise GenerationError(f"failed to parse generated certificate: {e}") from e

    return KeyPair(
      private_key=private_key,
      certificate=certificate,
      private_key_pem=private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
      ),
      certificate_pem=certificate.public_bytes(serialization.Encoding.PEM),
    )

  def save_key_pair(self, key_pair: KeyPair, private_key_path: Path, certificate_path: Path):
    """Write the key (owner-only) and the certificate (world-readable)"""
    private_key_path, certificate_path = Path(private_key_path), Path(certificate_path)

    for target in (private_key_path, certificate_path):
      try:
        target.parent.mkdir(parents=True, exist_ok=True)
      except OSError as e:
        raise StorageError(f"failed to create directory ({e.strerror})", target.parent) from e

    self._write(private_key_path, key_pair.private_key_pem, 0o600)
    self.output.debug(f"Wrote private key: {private_key_path}")
    self._write(certificate_path, key_pair.certificate_pem, 0o644)
    self.output.debug(f"Wrote certificate: {certificate_path}")

  def _write(self, path: Path, data: bytes, mode: int):
    try:
      fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
      with os.fdopen(fd, 'wb') as f:
        f.write(data)
      # O_CREAT mode is masked by umask and ignored for existing files
      os.chmod(path, mode)
    except OSError as e:
      raise StorageError(f"failed to write file ({e.strerror})", path) from e

  def validate_certificate(self, cert_path: Path, now: Optional[datetime] = None) -> CertificateInfo:
    """Parse a PEM certificate file and report its validity facts"""
    try:
      data = Path(cert_path).read_bytes()
    except OSError as e:
      raise StorageError(f"failed to read certificate file ({e.strerror})", cert_path) from e

    match = PEM_BLOCK.search(data)
    if not match:
      raise ValidationError("failed to decode PEM block from certificate")
    block_type = match.group(1).decode()
    if block_type != "CERTIFICATE":
      raise ValidationError(f"PEM block is not a certificate (type: {block_type})")

    try:
      cert = x509.load_pem_x509_certificate(data[match.start():])
    except ValueError as e:
      raise ValidationError(f"failed to parse certificate: {e}") from e

    try:
      san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
      san = x509.SubjectAlternativeName([])

    now = now or datetime.now(timezone.utc)
    not_after = cert.not_valid_after_utc
    return CertificateInfo(
      subject=_common_name(cert.subject),
      issuer=_common_name(cert.issuer),
      not_before=cert.not_valid_before_utc,
      not_after=not_after,
      dns_names=san.get_values_for_type(x509.DNSName),
      ip_addresses=[str(ip) for ip in san.get_values_for_type(x509.IPAddress)],
      email_addresses=san.get_values_for_type(x509.RFC822Name),
      is_expired=now > not_after,
      # int() truncates toward zero, so it goes negative one day after expiry
      days_until_expiry=int((not_after - now).total_seconds() / 86400),
    )


def _common_name(name: x509.Name) -> str:
  attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
  return str(attrs[0].value) if attrs else ""
