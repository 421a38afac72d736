"""
VTable Explorer memory utilities
Typed reads over a host image. Every read is preceded by a mapped check and yields None
when the bytes are not there.
"""

import struct

from .vte_image import NullDemangler
from .vte_log import log_debug

# auto-generated names hosts give to unnamed code and data
AUTO_FUNC_PREFIXES = ("sub_", "nullsub_", "j_")
AUTO_FUNC_MARKERS = ("_vfunc_",)
AUTO_DATA_PREFIXES = ("off_", "data_", "unk_", "dword_", "qword_")

class utils(object):
    """Memory and symbol access for one image"""

    def __init__(self, image, symbols=None, demangler=None, functions=None):
        self.image = image
        self.symbols = symbols if symbols is not None else image
        self.demangler = demangler if demangler is not None else NullDemangler()
        self.functions = functions

        self.PTR_SIZE = image.ptr_size
        self.x64 = self.PTR_SIZE == 8

    def is_valid_addr(self, addr):
        """Check if address is mapped"""
        if addr is None or addr < 0:
            return False
        return self.image.is_mapped(addr)

    def is_executable(self, addr):
        if not self.is_valid_addr(addr):
            return False
        return self.image.is_executable(addr)

    def get_imagebase(self):
        return self.image.image_base

    def _read(self, addr, size):
        if not self.is_valid_addr(addr):
            return None
        data = self.image.read(addr, size)
        if data is None or len(data) < size:
            return None
        return data

    def get_byte(self, addr):
        data = self._read(addr, 1)
        return data[0] if data else None

    def get_dword(self, addr):
        """Read a 32-bit dword from memory"""
        data = self._read(addr, 4)
        if data:
            return struct.unpack('<I', data)[0]
        return None

    def get_signed_dword(self, addr):
        """Read a 32-bit signed dword from memory"""
        data = self._read(addr, 4)
        if data:
            return struct.unpack('<i', data)[0]
        return None

    def get_qword(self, addr):
        data = self._read(addr, 8)
        if data:
            return struct.unpack('<Q', data)[0]
        return None

    def get_ptr(self, addr):
        """Read a pointer-sized value from memory"""
        if self.PTR_SIZE == 8:
            return self.get_qword(addr)
        return self.get_dword(addr)

    def get_signed_ptr(self, addr):
        data = self._read(addr, self.PTR_SIZE)
        if data:
            return struct.unpack('<q' if self.PTR_SIZE == 8 else '<i', data)[0]
        return None

    def rva_to_va(self, rva):
        """Resolve a 32-bit image-relative offset; a zero RVA is a null reference"""
        base = self.get_imagebase()
        if base is None or rva is None or rva == 0:
            return None
        return base + rva

    def get_string(self, addr, max_len=1024):
        """Read printable/underscore bytes up to a NUL or the first unprintable byte"""
        if not self.is_valid_addr(addr):
            return ""
        chars = []
        for i in range(max_len):
            c = self.get_byte(addr + i)
            if c is None or c == 0:
                break
            if not (0x20 <= c < 0x7f):
                break
            chars.append(chr(c))
        return "".join(chars)

    def get_name(self, addr):
        """Get symbol name at address"""
        if addr is None:
            return None
        return self.symbols.get_name(addr)

    def demangle(self, name):
        if not name:
            return None
        try:
            return self.demangler.demangle(name)
        except Exception as e:
            # host demanglers are best effort and some raise on garbage input
            log_debug(f"Demangler failed for '{name}': {e}")
            return None

    def is_function(self, addr):
        if self.functions is None:
            return False
        return self.functions.is_function(addr)

def is_auto_func_name(name):
    if not name:
        return False
    if name.startswith(AUTO_FUNC_PREFIXES):
        return True
    return any(m in name for m in AUTO_FUNC_MARKERS)

def is_auto_data_name(name):
    if not name:
        return False
    return name.startswith(AUTO_DATA_PREFIXES)
