"""
MSVC RTTI Parser
Complete Object Locator, Class Hierarchy Descriptor, Base Class Array/Descriptor and
Type Descriptor readers. On x64 every internal reference is an RVA from the image base,
on x86 it is an absolute address.
"""

from .rtti_info import BaseClassInfo, InheritanceInfo, CONFIDENCE_VALIDATED
from .symbol_scanner import normalize_msvc_nested_class, clean_msvc_decorated_name
from .vte_log import log_debug

COL_MAX_SIGNATURE = 2

class RTTIStruc(object):
    """Base class for RTTI structures"""
    size = 0

def strip(name):
    """Strip RTTI decoration from type names"""
    if name.endswith("`RTTI Type Descriptor'"):
        name = name[:-len("`RTTI Type Descriptor'")].rstrip()
    for prefix in ("class ", "struct ", "union "):
        if name.startswith(prefix):
            return name[len(prefix):]
    return name

def resolve_ref(u, value):
    """Turn a 32-bit structure reference into an address"""
    if value is None:
        return None
    if u.x64:
        return u.rva_to_va(value)
    return value if value != 0 else None

def type_name_from_decorated(u, raw):
    """Display name from a '.?AV...@@' type descriptor string"""
    if not raw:
        return ""

    # same attempts a host demangler needs: as-is, as an RTTI0 symbol, without the dot
    attempts = [raw]
    if raw.startswith('.'):
        attempts.append('??_R0' + raw[1:])
        attempts.append(raw[1:])
    for mangled in attempts:
        demangled = u.demangle(mangled)
        if demangled:
            return normalize_msvc_nested_class(clean_msvc_decorated_name(strip(demangled)))

    if len(raw) > 4 and (raw.startswith(".?AV") or raw.startswith(".?AU")):
        end = raw.find("@@", 4)
        if end != -1:
            n = raw[4:end]
            if n.startswith("?$"):
                te = n.find('@', 2)
                return n[2:te] if te != -1 else n[2:]
            return normalize_msvc_nested_class(n)
    body = raw[3:] if raw.startswith(".?A") else raw
    return normalize_msvc_nested_class(clean_msvc_decorated_name(body, strip_kind=True))

class RTTITypeDescriptor(RTTIStruc):
    """pVFTable, spare, then the decorated name"""

    def __init__(self, u, ea, max_len=1024):
        self.ea = ea
        self.class_name = None
        self.mangled = None

        if not u.is_valid_addr(ea):
            return

        name_offset = u.PTR_SIZE * 2
        mangled = u.get_string(ea + name_offset, max_len)
        if not mangled:
            # Not a real type descriptor
            return

        self.mangled = mangled
        self.size = name_offset + len(mangled) + 1
        name = type_name_from_decorated(u, mangled)
        if name:
            self.class_name = name

class RTTIClassHierarchyDescriptor(RTTIStruc):

    CHD_MULTINH   = 0x01  # Multiple inheritance
    CHD_VIRTINH   = 0x02  # Virtual inheritance
    CHD_AMBIGUOUS = 0x04  # Ambiguous inheritance

    size = 16

    def __init__(self, u, ea):
        self.ea = ea
        self.sig = None
        self.attribute = 0
        self.nb_classes = 0
        self.bcaea = None
        self.flags = ""

        if not u.is_valid_addr(ea):
            return

        self.sig = u.get_dword(ea)
        self.attribute = u.get_dword(ea + 4) or 0
        self.nb_classes = u.get_dword(ea + 8) or 0
        self.bcaea = resolve_ref(u, u.get_dword(ea + 12))

        if self.attribute & self.CHD_MULTINH:
            self.flags += "M"
        if self.attribute & self.CHD_VIRTINH:
            self.flags += "V"
        if self.attribute & self.CHD_AMBIGUOUS:
            self.flags += "A"
        log_debug(f"Found CHD at 0x{ea:x}: {self.nb_classes} classes, flags: {self.flags}")

class RTTIBaseClassDescriptor(RTTIStruc):

    BCD_NOTVISIBLE = 0x00000001
    BCD_AMBIGUOUS = 0x00000002
    BCD_PRIVORPROTBASE = 0x00000004
    BCD_PRIVORPROTINCOMPOBJ = 0x00000008
    BCD_VBOFCONTOBJ = 0x00000010
    BCD_NONPOLYMORPHIC = 0x00000020
    BCD_HASPCHD = 0x00000040  # pClassDescriptor field is present

    size = 24

    def __init__(self, u, ea, max_len=1024):
        self.ea = ea
        self.tdea = None
        self.name = ""
        self.nb_cbs = 0
        self.mdisp = 0
        self.pdisp = -1
        self.vdisp = 0
        self.attributes = 0

        if u.get_dword(ea) is None or u.get_dword(ea + 20) is None:
            return

        self.tdea = resolve_ref(u, u.get_dword(ea))
        self.nb_cbs = u.get_dword(ea + 4)
        self.mdisp = u.get_signed_dword(ea + 8)
        self.pdisp = u.get_signed_dword(ea + 12)
        self.vdisp = u.get_signed_dword(ea + 16)
        self.attributes = u.get_dword(ea + 20)
        if self.attributes & self.BCD_HASPCHD:
            self.size = 28

        if not u.is_valid_addr(self.tdea):
            return

        td = RTTITypeDescriptor(u, self.tdea, max_len)
        if td.class_name:
            self.name = td.class_name
            log_debug(f"Found BCD at 0x{ea:x}: {self.name}")

    @property
    def is_virtual(self):
        # pdisp is the vbtable displacement; -1 means the base is not virtual
        return self.pdisp != -1

class RTTIBaseClassArray(RTTIStruc):
    """Array of 32-bit references to BCDs; entry 0 describes the class itself"""

    def __init__(self, u, ea, nb_classes, max_len=1024):
        self.ea = ea
        self.nb_classes = nb_classes
        self.size = nb_classes * 4
        self.bases = []
        self.complete = False

        if not u.is_valid_addr(ea):
            return

        for i in range(nb_classes):
            bcd_ea = resolve_ref(u, u.get_dword(ea + i * 4))
            if not u.is_valid_addr(bcd_ea):
                log_debug(f"BCA at 0x{ea:x}: entry {i} does not resolve, stopping")
                return
            bcd = RTTIBaseClassDescriptor(u, bcd_ea, max_len)
            if not bcd.name:
                log_debug(f"BCA at 0x{ea:x}: entry {i} has no type name, stopping")
                return
            self.bases.append(bcd)
        self.complete = True
        log_debug(f"Found BCA at 0x{ea:x}: {len(self.bases)} valid BCDs")

class RTTICompleteObjectLocator(RTTIStruc):

    def __init__(self, u, ea, max_len=1024):
        self.ea = ea
        self.sig = None
        self.offset = 0
        self.cdOffset = 0
        self.tdea = None
        self.chdea = None
        self.selfea = None
        self.td = None
        self.chd = None
        self.name = None
        self.size = 24 if u.x64 else 20

        if u.get_dword(ea) is None or u.get_dword(ea + 16) is None:
            return

        self.sig = u.get_dword(ea)
        self.offset = u.get_dword(ea + 4)
        self.cdOffset = u.get_dword(ea + 8)
        self.tdea = resolve_ref(u, u.get_dword(ea + 12))
        self.chdea = resolve_ref(u, u.get_dword(ea + 16))
        if u.x64:
            self.selfea = resolve_ref(u, u.get_dword(ea + 20))

        if self.sig is None or self.sig > COL_MAX_SIGNATURE:
            return

        if u.is_valid_addr(self.tdea):
            td = RTTITypeDescriptor(u, self.tdea, max_len)
            if td.class_name:
                self.td = td
                self.name = td.class_name
        if u.is_valid_addr(self.chdea):
            self.chd = RTTIClassHierarchyDescriptor(u, self.chdea)

def validate_col(u, col_ea, max_bases=64):
    """Cheap structural check used while probing for the RTTI slot"""
    sig = u.get_dword(col_ea)
    if sig is None or sig > COL_MAX_SIGNATURE:
        return False

    tdea = resolve_ref(u, u.get_dword(col_ea + 12))
    chdea = resolve_ref(u, u.get_dword(col_ea + 16))
    if not u.is_valid_addr(tdea) or not u.is_valid_addr(chdea):
        return False

    if u.get_dword(chdea) != 0:
        return False
    count = u.get_dword(chdea + 8)
    if count is None or count > max_bases:
        return False
    return True

def locate_col(u, vtable, cfg):
    """Follow the RTTI slot of a vtable to its COL"""
    slot = vtable + cfg.rtti_offset
    if not u.is_valid_addr(slot):
        return None
    if u.x64:
        if cfg.use_64bit_ptrs:
            return u.get_qword(slot)
        return u.rva_to_va(u.get_dword(slot))
    return u.get_dword(slot)

def parse_msvc_col(u, col_ea, class_name="", max_bases=64, max_len=1024):
    """Decode the base classes reachable from a COL"""
    info = InheritanceInfo(class_name)

    if not u.is_valid_addr(col_ea):
        return info.not_found("complete object locator is not mapped")

    col = RTTICompleteObjectLocator(u, col_ea, max_len)
    if col.sig is None:
        return info.not_found(f"complete object locator at 0x{col_ea:x} is truncated")
    if col.sig > COL_MAX_SIGNATURE:
        return info.not_found(f"bad COL signature {col.sig} at 0x{col_ea:x}")
    if col.name:
        info.class_name = col.name
    if col.chd is None or col.chd.sig is None:
        return info.not_found(f"class hierarchy descriptor of COL 0x{col_ea:x} does not resolve")

    chd = col.chd
    info.has_multiple_inheritance = bool(chd.attribute & chd.CHD_MULTINH)
    info.has_virtual_inheritance = bool(chd.attribute & chd.CHD_VIRTINH)

    if chd.nb_classes == 0 or chd.nb_classes > max_bases:
        return info.not_found(f"base class count {chd.nb_classes} out of range at CHD 0x{chd.ea:x}")

    info.found = True
    info.confidence = CONFIDENCE_VALIDATED

    bca = RTTIBaseClassArray(u, chd.bcaea, chd.nb_classes, max_len)
    for i, bcd in enumerate(bca.bases):
        if i == 0:
            continue
        if bcd.name == info.class_name or (class_name and bcd.name == class_name):
            continue
        info.base_classes.append(BaseClassInfo(bcd.name, bcd.mdisp, bcd.is_virtual))

    if not bca.complete:
        info.reason = f"base class array at 0x{chd.bcaea or 0:x} is truncated"
    return info
