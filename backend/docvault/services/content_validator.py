"""
Content validation for incoming uploads.

Inspects the raw bytes, the declared content type and the filename and returns
a verdict. Checks run in a fixed order and the first hard failure stops the
run; everything else is collected as a warning. The verdict doubles as the
document's security metadata once the upload succeeds.
"""
import logging
import re
from dataclasses import dataclass, field

from docvault.database import utcnow
from docvault.services.malware_scan import MalwareScanner, ScanResult, ScanVerdict
from docvault.utils.filenames import file_extension

logger = logging.getLogger("docvault.content_validator")

PDF = "application/pdf"
DOC = "application/msword"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLS = "application/vnd.ms-excel"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
TEXT = "text/plain"
JPEG = "image/jpeg"
PNG = "image/png"
GIF = "image/gif"

SUPPORTED_CONTENT_TYPES = (PDF, DOC, DOCX, XLS, XLSX, TEXT, JPEG, PNG, GIF)

# Leading-byte signatures (hex). Zip and OLE containers are shared by several
# Office formats, so each signature maps to the family of types it can carry.
SIGNATURES: list[tuple[str, tuple[str, ...]]] = [
    ("25504446", (PDF,)),  # %PDF
    ("FFD8FF", (JPEG,)),
    ("89504E47", (PNG,)),
    ("474946383761", (GIF,)),  # GIF87a
    ("474946383961", (GIF,)),  # GIF89a
    ("D0CF11E0A1B11AE1", (DOC, XLS)),  # OLE compound file
    ("504B0304", (DOCX, XLSX)),  # zip
]

DANGEROUS_SIGNATURES: dict[str, str] = {
    "4D5A": "PE executable",
    "7F454C46": "ELF executable",
    "CAFEBABE": "Java class file",
    "FEEDFACE": "Mach-O executable",
    "FEEDFACF": "Mach-O executable",
    "CEFAEDFE": "Mach-O executable",
    "CFFAEDFE": "Mach-O executable",
    "213C617263683E": "Unix archive",  # !<arch>
}

EXPECTED_EXTENSIONS: dict[str, tuple[str, ...]] = {
    PDF: ("pdf",),
    DOC: ("doc",),
    DOCX: ("docx",),
    XLS: ("xls",),
    XLSX: ("xlsx",),
    TEXT: ("txt", "text"),
    JPEG: ("jpg", "jpeg"),
    PNG: ("png",),
    GIF: ("gif",),
}

DANGEROUS_EXTENSIONS = {
    "exe", "bat", "cmd", "com", "scr", "vbs", "js", "msi", "ps1", "jar", "sh", "dll", "pif",
}

RESERVED_NAMES = {"CON", "PRN", "AUX", "NUL"} | {f"COM{i}" for i in range(1, 10)} | {f"LPT{i}" for i in range(1, 10)}
RESERVED_CHARS = re.compile(r'[<>:"|?*]')
CONTROL_CHARS = re.compile(r"[\x00-\x1f]")
TRAILING_JUNK = re.compile(r"[\s.]+$")

MAX_FILENAME_CHARS = 255
SIGNATURE_BYTES = 8
TEXT_SAMPLE_BYTES = 1024
BINARY_RATIO = 0.10

PDF_SCRIPT_MARKERS = (b"/JavaScript", b"/JS")
OFFICE_MACRO_MARKERS = (b"vbaProject.bin", "_VBA_PROJECT".encode("utf-16-le"))
OFFICE_TYPES = (DOC, DOCX, XLS, XLSX)


@dataclass
class ValidationVerdict:
    accepted: bool
    signature: str
    detected_content_type: str | None = None
    is_executable: bool = False
    has_embedded_content: bool = False
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    scan: ScanResult | None = None
    scanned_at: str = field(default_factory=utcnow)

    def security_metadata(self) -> dict:
        return {
            "detected_content_type": self.detected_content_type,
            "signature": self.signature,
            "is_executable": self.is_executable,
            "has_embedded_content": self.has_embedded_content,
            "warnings": list(self.warnings),
            "malware_scan": self.scan.as_dict() if self.scan else None,
            "scanned_at": self.scanned_at,
        }


def normalize_content_type(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def detect_family(head: bytes) -> tuple[str, ...]:
    signature = head[:SIGNATURE_BYTES].hex().upper()
    for prefix, family in SIGNATURES:
        if signature.startswith(prefix):
            return family
    return ()


def dangerous_kind(head: bytes) -> str | None:
    signature = head[:SIGNATURE_BYTES].hex().upper()
    for prefix, kind in DANGEROUS_SIGNATURES.items():
        if signature.startswith(prefix):
            return kind
    return None


def looks_binary(data: bytes) -> bool:
    sample = data[:TEXT_SAMPLE_BYTES]
    if not sample:
        return False
    non_printable = sum(1 for b in sample if not (32 <= b <= 126) and b not in (9, 10, 13))
    return non_printable / len(sample) > BINARY_RATIO


def check_filename(filename: str, content_type: str) -> tuple[list[str], list[str]]:
    """Return (reasons, warnings) for a user-facing filename.

    Extension checks run on the name with trailing dots and whitespace
    removed, since Windows drops them when the file is saved.
    """
    reasons: list[str] = []
    warnings: list[str] = []

    if not filename or not filename.strip():
        return ["File name is required"], warnings
    if len(filename) > MAX_FILENAME_CHARS:
        reasons.append(f"File name exceeds {MAX_FILENAME_CHARS} characters")
    if "/" in filename or "\\" in filename or filename.startswith("..") or filename.endswith(".."):
        reasons.append("File name contains path traversal sequences")
    if RESERVED_CHARS.search(filename) or CONTROL_CHARS.search(filename):
        reasons.append("File name contains reserved characters")
    if filename.startswith("."):
        reasons.append("Hidden file names are not allowed")
    if filename.split(".")[0].strip().upper() in RESERVED_NAMES:
        reasons.append("File name is a reserved device name")

    trimmed = TRAILING_JUNK.sub("", filename)
    parts = [part.strip() for part in trimmed.lower().split(".")]
    if len(parts) > 2 and (parts[-2] in DANGEROUS_EXTENSIONS or parts[-1] in DANGEROUS_EXTENSIONS):
        reasons.append("File has potentially dangerous double extension")

    extension = file_extension(trimmed)
    expected = EXPECTED_EXTENSIONS.get(content_type)
    if expected and extension not in expected:
        warnings.append(f"File extension '{extension}' doesn't match content type '{content_type}'")

    return reasons, warnings


class ContentValidator:
    def __init__(self, scanner: MalwareScanner | None = None, scan_fail_open: bool = True):
        self.scanner = scanner
        self.scan_fail_open = scan_fail_open

    def validate(self, data: bytes, declared_type: str | None, filename: str) -> ValidationVerdict:
        declared = normalize_content_type(declared_type)
        head = data[:SIGNATURE_BYTES]
        verdict = ValidationVerdict(
            accepted=True,
            signature=head.hex().upper(),
            is_executable=dangerous_kind(head) is not None,
        )

        checks = (
            self._check_empty,
            self._check_signature,
            self._check_dangerous,
            self._check_filename,
            self._check_null_bytes,
            self._check_embedded,
            self._check_malware,
        )
        for check in checks:
            check(verdict, data, declared, filename)
            if verdict.reasons:
                verdict.accepted = False
                logger.info("Rejected %s (%s): %s", filename, declared, "; ".join(verdict.reasons))
                break
        return verdict

    def _check_empty(self, verdict, data, declared, filename):
        if not data:
            verdict.reasons.append("File is empty")

    def _check_signature(self, verdict, data, declared, filename):
        if declared not in SUPPORTED_CONTENT_TYPES:
            verdict.reasons.append(f"Content type '{declared or 'unknown'}' is not supported")
            return

        family = detect_family(data)
        if declared == TEXT:
            verdict.detected_content_type = family[0] if family else TEXT
            if family:
                verdict.warnings.append(f"File signature indicates {family[0]} but declared as {TEXT}")
            if looks_binary(data):
                verdict.warnings.append("File declared as text but contains binary data")
            return

        if len(data) < 4:
            verdict.reasons.append("File too small to verify its signature")
            return

        if not family:
            verdict.warnings.append(f"Could not verify file signature for declared type {declared}")
        elif declared in family:
            verdict.detected_content_type = declared
        else:
            verdict.detected_content_type = family[0]
            verdict.reasons.append(f"File signature indicates {family[0]} but declared as {declared}")

    def _check_dangerous(self, verdict, data, declared, filename):
        kind = dangerous_kind(data)
        if kind:
            verdict.reasons.append(f"File appears to be executable-like ({kind})")

    def _check_filename(self, verdict, data, declared, filename):
        reasons, warnings = check_filename(filename, declared)
        verdict.reasons.extend(reasons)
        verdict.warnings.extend(warnings)

    def _check_null_bytes(self, verdict, data, declared, filename):
        if b"\x00" in data:
            verdict.warnings.append("File contains null bytes, which may indicate binary content")

    def _check_embedded(self, verdict, data, declared, filename):
        if declared == PDF and any(marker in data for marker in PDF_SCRIPT_MARKERS):
            verdict.has_embedded_content = True
            verdict.warnings.append("PDF contains embedded JavaScript")
        elif declared in OFFICE_TYPES and any(marker in data for marker in OFFICE_MACRO_MARKERS):
            verdict.has_embedded_content = True
            verdict.warnings.append("Office document contains macros")

    def _check_malware(self, verdict, data, declared, filename):
        if self.scanner is None:
            return
        result = self.scanner.scan(data, filename)
        verdict.scan = result

        if result.verdict == ScanVerdict.INFECTED:
            threats = ", ".join(result.threats) or "unspecified threat"
            verdict.reasons.append(f"Malware scan detected threats: {threats}")
            return
        if result.verdict == ScanVerdict.CLEAN:
            return

        problem = result.error or "scanner could not determine whether the file is clean"
        if self.scan_fail_open:
            verdict.warnings.append(f"Malware scan warning: {problem}")
        else:
            verdict.reasons.append(f"Malware scan unavailable: {problem}")
