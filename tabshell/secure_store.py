"""
Encrypted on-disk records (Fernet). Used to keep command history between
runs without leaving it readable on disk.
"""

import os

from cryptography.fernet import Fernet, InvalidToken

from tabshell.console_log import log


class EncryptedStore:
    def __init__(self, path, key_file):
        self.path = path
        self.key_file = key_file
        self.cipher = self._initialize_encryption()

    def _initialize_encryption(self):
        try:
            if os.path.exists(self.key_file):
                with open(self.key_file, 'rb') as f:
                    key = f.read().strip()
            else:
                key = Fernet.generate_key()
                fd = os.open(self.key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                with os.fdopen(fd, 'wb') as f:
                    f.write(key)
                log(f"Created key file {self.key_file}", "SYSTEM")
            return Fernet(key)
        except (OSError, ValueError) as e:
            log(f"Encryption unavailable: {e}", "ERROR")
            return None

    def write_records(self, records):
        """Replace the file with one encrypted token per record."""
        if not self.cipher:
            return False
        tmp = f"{self.path}.tmp"
        try:
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'wb') as f:
                for record in records:
                    f.write(self.cipher.encrypt(record.encode()) + b'\n')
            os.replace(tmp, self.path)
        except OSError as e:
            log(f"Could not save {self.path}: {e}", "ERROR")
            return False
        return True

    def read_records(self):
        if not self.cipher or not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'rb') as f:
                encrypted_lines = f.readlines()
        except OSError as e:
            log(f"Could not read {self.path}: {e}", "ERROR")
            return []

        records = []
        skipped = 0
        for line in encrypted_lines:
            if not line.strip():
                continue
            try:
                records.append(self.cipher.decrypt(line.strip()).decode())
            except (InvalidToken, UnicodeDecodeError):
                skipped += 1
        if skipped:
            log(f"Skipped {skipped} unreadable record(s) in {self.path}", "WARN")
        return records
