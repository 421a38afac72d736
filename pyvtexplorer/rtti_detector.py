"""
RTTI format detection
Decides the ABI family, how MSVC x64 references its COL, and where the RTTI slot sits
relative to a vtable symbol. Detected once per image from the first vtable asked about.
"""

from .msvc_rtti import validate_col
from .gcc_rtti import validate_gcc_typeinfo
from .symbol_scanner import ABI_MSVC, ABI_ITANIUM, MSVC_VTABLE_PREFIX, ITANIUM_VTABLE_PREFIX
from .vte_config import vte_config
from .vte_log import log_info, log_debug

RTTI_OFFSET_CANDIDATES = (-8, -16, 8, 0, 16, -24, 24)
DEFAULT_RTTI_OFFSET = -8

def rtti_offset_candidates(ptr_size):
    """Probe order; 32-bit images put the slot one dword away, which the 64-bit set misses"""
    if ptr_size == 8:
        return RTTI_OFFSET_CANDIDATES
    return (-ptr_size, ptr_size) + RTTI_OFFSET_CANDIDATES

def default_rtti_offset(ptr_size):
    return DEFAULT_RTTI_OFFSET if ptr_size == 8 else -ptr_size

class RTTIConfig(object):

    def __init__(self, is_msvc=False, use_64bit_ptrs=False, rtti_offset=DEFAULT_RTTI_OFFSET, detected=False):
        self.is_msvc = is_msvc
        self.use_64bit_ptrs = use_64bit_ptrs
        self.rtti_offset = rtti_offset
        self.detected = detected

    @property
    def abi(self):
        return ABI_MSVC if self.is_msvc else ABI_ITANIUM

    def __eq__(self, other):
        if not isinstance(other, RTTIConfig):
            return NotImplemented
        return (self.is_msvc, self.use_64bit_ptrs, self.rtti_offset, self.detected) == \
               (other.is_msvc, other.use_64bit_ptrs, other.rtti_offset, other.detected)

    def __repr__(self):
        return (f"RTTIConfig({self.abi}, use_64bit_ptrs={self.use_64bit_ptrs}, "
                f"rtti_offset={self.rtti_offset}, detected={self.detected})")

def is_pe_file(u):
    return "PE" in (u.image.file_format or "")

def has_msvc_mangling(u, vtable):
    name = u.get_name(vtable)
    return bool(name) and name.startswith(MSVC_VTABLE_PREFIX)

def has_gcc_mangling(u, vtable):
    name = u.get_name(vtable)
    return bool(name) and name.startswith(ITANIUM_VTABLE_PREFIX)

def detect_msvc_64bit_ptr_format(u, vtable, max_bases=64):
    """True if x64 vtables point at their COL with a full pointer, False for a 32-bit RVA"""
    if u.get_imagebase() is None:
        return True

    ptr64 = u.get_qword(vtable - 8)
    if u.is_valid_addr(ptr64) and validate_col(u, ptr64, max_bases):
        return True

    col = u.rva_to_va(u.get_dword(vtable - 8))
    if u.is_valid_addr(col) and validate_col(u, col, max_bases):
        return False

    return True

def detect_rtti_offset(u, vtable, is_msvc, max_bases=64):
    """Probe the usual RTTI slot positions around a vtable"""
    for off in rtti_offset_candidates(u.PTR_SIZE):
        probe = vtable + off
        if not u.is_valid_addr(probe):
            continue

        if is_msvc:
            col = u.get_ptr(probe)
            if u.is_valid_addr(col) and validate_col(u, col, max_bases):
                return off
            if u.x64:
                col = u.rva_to_va(u.get_dword(probe))
                if u.is_valid_addr(col) and validate_col(u, col, max_bases):
                    return off
        else:
            ti = u.get_ptr(probe)
            if u.is_valid_addr(ti) and validate_gcc_typeinfo(u, ti):
                return off

    fallback = default_rtti_offset(u.PTR_SIZE)
    log_debug(f"No RTTI slot validated around vtable 0x{vtable:x}, using {fallback}")
    return fallback

def auto_detect(u, vtable, config=None):
    if config is None:
        config = vte_config()

    cfg = RTTIConfig()
    cfg.is_msvc = has_msvc_mangling(u, vtable) or (not has_gcc_mangling(u, vtable) and is_pe_file(u))

    if cfg.is_msvc and u.x64:
        cfg.use_64bit_ptrs = detect_msvc_64bit_ptr_format(u, vtable, config.max_msvc_bases)

    cfg.rtti_offset = detect_rtti_offset(u, vtable, cfg.is_msvc, config.max_msvc_bases)
    cfg.detected = True
    return cfg

class rtti_detector(object):
    """Holds the detected RTTIConfig for one image until reset"""

    def __init__(self, u, config=None):
        self.u = u
        self.config = config if config is not None else vte_config()
        self.rtti_config = RTTIConfig()

    def get_config(self, vtable):
        if not self.rtti_config.detected:
            self.rtti_config = auto_detect(self.u, vtable, self.config)
            log_info(f"Detected RTTI format from vtable 0x{vtable:x}: {self.rtti_config}")
        return self.rtti_config

    def reset(self):
        self.rtti_config = RTTIConfig()
