"""
VTable Explorer host interfaces
The address space, symbols, demangler and function database are supplied by the host
(Binary Ninja, a loader script, a test fixture). FlatImage is a self-contained host.
"""

import abc
import bisect
import struct

class MemoryImage(abc.ABC):
    """Byte-addressable image"""

    ptr_size = 8
    image_base = None
    file_format = ""

    @abc.abstractmethod
    def is_mapped(self, addr):
        pass

    @abc.abstractmethod
    def read(self, addr, size):
        """Return exactly size bytes, or None when the range is not fully mapped"""
        pass

    @abc.abstractmethod
    def is_executable(self, addr):
        pass

class SymbolTable(abc.ABC):

    @abc.abstractmethod
    def symbols(self):
        """Iterate (address, name) pairs"""
        pass

    @abc.abstractmethod
    def get_name(self, addr):
        pass

class Demangler(abc.ABC):

    @abc.abstractmethod
    def demangle(self, name):
        """Best effort; None when the name cannot be demangled"""
        pass

class NullDemangler(Demangler):

    def demangle(self, name):
        return None

class FunctionRegistry(abc.ABC):

    @abc.abstractmethod
    def is_function(self, addr):
        pass

    @abc.abstractmethod
    def add_function(self, addr):
        pass

    @abc.abstractmethod
    def set_comment(self, addr, comment):
        pass

class Segment(object):

    def __init__(self, start, data, executable=False, name=None):
        self.start = start
        self.data = bytearray(data)
        self.executable = executable
        self.name = name

    @property
    def end(self):
        return self.start + len(self.data)

    def __contains__(self, addr):
        return self.start <= addr < self.end

    def __repr__(self):
        return f"Segment({self.name or '?'} 0x{self.start:x}-0x{self.end:x}{' X' if self.executable else ''})"

class FlatImage(MemoryImage, SymbolTable, Demangler, FunctionRegistry):
    """In-memory image made of little-endian segments"""

    def __init__(self, ptr_size=8, image_base=None, file_format="ELF", demangled=None):
        self.ptr_size = ptr_size
        self.image_base = image_base
        self.file_format = file_format
        self.segments = []
        self._starts = []
        self.names = {}
        self.demangled = dict(demangled) if demangled else {}
        self.functions = set()
        self.comments = {}

    def add_segment(self, start, data, executable=False, name=None):
        """Map a segment; data is a bytes-like object or a size to zero-fill"""
        if isinstance(data, int):
            data = bytes(data)
        seg = Segment(start, data, executable, name)
        idx = bisect.bisect_right(self._starts, start)
        self._starts.insert(idx, start)
        self.segments.insert(idx, seg)
        return seg

    def _segment_at(self, addr):
        idx = bisect.bisect_right(self._starts, addr) - 1
        if idx >= 0 and addr in self.segments[idx]:
            return self.segments[idx]
        return None

    def is_mapped(self, addr):
        if addr is None or addr < 0:
            return False
        return self._segment_at(addr) is not None

    def is_executable(self, addr):
        if addr is None or addr < 0:
            return False
        seg = self._segment_at(addr)
        return seg is not None and seg.executable

    def read(self, addr, size):
        if addr is None or addr < 0 or size <= 0:
            return None
        seg = self._segment_at(addr)
        if seg is None or addr + size > seg.end:
            return None
        off = addr - seg.start
        return bytes(seg.data[off:off + size])

    def write(self, addr, data):
        seg = self._segment_at(addr)
        if seg is None or addr + len(data) > seg.end:
            raise ValueError(f"write outside of mapped memory at 0x{addr:x}")
        off = addr - seg.start
        seg.data[off:off + len(data)] = data

    def write_ptr(self, addr, value):
        fmt = '<Q' if self.ptr_size == 8 else '<I'
        self.write(addr, struct.pack(fmt, value & ((1 << (self.ptr_size * 8)) - 1)))

    def write_dword(self, addr, value):
        self.write(addr, struct.pack('<I', value & 0xffffffff))

    def write_string(self, addr, s):
        self.write(addr, s.encode('ascii') + b'\x00')

    def add_symbol(self, addr, name):
        self.names[addr] = name

    def symbols(self):
        return list(self.names.items())

    def get_name(self, addr):
        return self.names.get(addr)

    def demangle(self, name):
        return self.demangled.get(name)

    def is_function(self, addr):
        return addr in self.functions

    def add_function(self, addr):
        self.functions.add(addr)

    def set_comment(self, addr, comment):
        self.comments[addr] = comment
