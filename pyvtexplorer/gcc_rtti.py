"""
Itanium (GCC/Clang) RTTI Parser

typeinfo layout, in pointer-sized words:
  +0  vtable of the typeinfo class (__class_type_info, __si_..., __vmi_...)
  +1  pointer to the length-prefixed type name
  +2  __si: base typeinfo pointer
      __vmi: u32 flags, u32 base count, then (base typeinfo, long offset_flags) pairs
"""

from .rtti_info import (BaseClassInfo, InheritanceInfo,
                        CONFIDENCE_VALIDATED, CONFIDENCE_HEURISTIC)
from .symbol_scanner import read_length_prefixed, is_valid_class_name
from .vte_utils import is_auto_data_name
from .vte_log import log_debug

CLASS_TYPE_INFO = "__class_type_info"
SI_CLASS_TYPE_INFO = "__si_class_type_info"
VMI_CLASS_TYPE_INFO = "__vmi_class_type_info"

TYPEINFO_NAME_PREFIX = "_ZTS"
MAX_NAME_COMPONENT = 256

# __base_class_type_info.__offset_flags
BASE_IS_VIRTUAL = 0x1
BASE_OFFSET_SHIFT = 8

def extract_class_from_mangled(u, m, cap=MAX_NAME_COMPONENT):
    """Class name from a typeinfo name record ('4Base', 'N2ns4BaseE', '_ZTS4Base')"""
    if not m:
        return ""

    body = m[len(TYPEINFO_NAME_PREFIX):] if m.startswith(TYPEINFO_NAME_PREFIX) else m

    if body.startswith('N'):
        parts = []
        pos = 1
        while pos < len(body) and body[pos] != 'E':
            comp, nxt = read_length_prefixed(body, pos, cap)
            if comp is None:
                break
            parts.append(comp)
            pos = nxt
        if parts:
            return "::".join(parts)
    elif body[:1].isdigit():
        name, _ = read_length_prefixed(body, 0, cap)
        if name:
            return name

    demangled = u.demangle(m if m.startswith("_Z") else TYPEINFO_NAME_PREFIX + m)
    if demangled:
        for marker in ("typeinfo name for ", "typeinfo for "):
            pos = demangled.find(marker)
            if pos != -1:
                return demangled[pos + len(marker):]
        return demangled
    return ""

def read_type_name(u, typeinfo, max_len=1024):
    """Name of the class a typeinfo describes"""
    if not u.is_valid_addr(typeinfo):
        return ""
    name_ptr = u.get_ptr(typeinfo + u.PTR_SIZE)
    if not u.is_valid_addr(name_ptr):
        return ""
    return extract_class_from_mangled(u, u.get_string(name_ptr, max_len))

def validate_gcc_typeinfo(u, ti):
    """True if ti looks like a typeinfo object"""
    if not u.is_valid_addr(ti):
        return False

    vtbl = u.get_ptr(ti)
    if not u.is_valid_addr(vtbl):
        return False
    name = u.get_ptr(ti + u.PTR_SIZE)
    if not u.is_valid_addr(name):
        return False

    prefix = ""
    for i in range(4):
        c = u.get_byte(name + i)
        if c is None or not (0x20 < c < 0x7f):
            break
        prefix += chr(c)
    if prefix == TYPEINFO_NAME_PREFIX:
        return True

    # the name record itself carries no _ZTS prefix in most images
    if prefix[:1].isdigit() or prefix[:1] == 'N':
        return is_valid_class_name(extract_class_from_mangled(u, u.get_string(name)))
    return False

def _kind_from_name(name):
    if VMI_CLASS_TYPE_INFO in name:
        return VMI_CLASS_TYPE_INFO
    if SI_CLASS_TYPE_INFO in name:
        return SI_CLASS_TYPE_INFO
    if CLASS_TYPE_INFO in name:
        return CLASS_TYPE_INFO
    return None

def _lookup_kind(u, addr):
    """Symbol at a typeinfo vtable pointer, or at its address point two slots earlier"""
    name = u.get_name(addr)
    if name and not is_auto_data_name(name):
        return name
    name = u.get_name(addr - 2 * u.PTR_SIZE)
    if name and "class_type_info" in name:
        return name
    return None

def typeinfo_kind_name(u, kind_ptr):
    name = _lookup_kind(u, kind_ptr)
    if name:
        return name

    # imported typeinfo vtables are reached through one more pointer
    indirect = u.get_ptr(kind_ptr)
    if u.is_valid_addr(indirect):
        return _lookup_kind(u, indirect)
    return None

def parse_gcc_typeinfo(u, ti, class_name="", max_bases=32, max_len=1024):
    """Decode the base classes described by one typeinfo object"""
    info = InheritanceInfo(class_name)
    if not u.is_valid_addr(ti):
        return info.not_found("typeinfo is not mapped")

    ps = u.PTR_SIZE
    kind = u.get_ptr(ti)
    name_ptr = u.get_ptr(ti + ps)
    if kind is None or name_ptr is None:
        return info.not_found(f"typeinfo at 0x{ti:x} is truncated")

    if not info.class_name:
        info.class_name = read_type_name(u, ti, max_len)

    kind_name = typeinfo_kind_name(u, kind)
    if kind_name is None:
        # nothing says what this is; read one trailing base pointer and hope
        base = read_type_name(u, u.get_ptr(ti + 2 * ps), max_len)
        if base and is_valid_class_name(base):
            info.base_classes.append(BaseClassInfo(base, confidence=CONFIDENCE_HEURISTIC))
            info.found = True
            info.confidence = CONFIDENCE_HEURISTIC
            info.reason = f"typeinfo kind at 0x{kind:x} unresolved, base guessed"
            return info
        return info.not_found(f"typeinfo kind at 0x{kind:x} unresolved")

    kind_id = _kind_from_name(kind_name)
    if kind_id is None:
        return info.not_found(f"typeinfo at 0x{ti:x} is a {kind_name}, not a class")

    info.found = True
    info.confidence = CONFIDENCE_VALIDATED

    if kind_id == SI_CLASS_TYPE_INFO:
        base = read_type_name(u, u.get_ptr(ti + 2 * ps), max_len)
        if base:
            info.base_classes.append(BaseClassInfo(base))
        else:
            info.reason = f"base typeinfo of 0x{ti:x} unresolved"

    elif kind_id == VMI_CLASS_TYPE_INFO:
        flags = u.get_dword(ti + 2 * ps)
        count = u.get_dword(ti + 2 * ps + 4)
        if flags is None or count is None:
            return info.not_found(f"vmi typeinfo at 0x{ti:x} is truncated")
        if count == 0:
            info.reason = f"vmi typeinfo at 0x{ti:x} has no bases"
            return info
        if count > max_bases:
            info.reason = f"vmi base count {count} clipped to {max_bases}"

        arr = ti + 2 * ps + 8
        for i in range(min(count, max_bases)):
            entry = arr + i * 2 * ps
            base_ti = u.get_ptr(entry)
            off_flags = u.get_signed_ptr(entry + ps)
            if base_ti is None or off_flags is None:
                info.reason = f"vmi base array of 0x{ti:x} truncated at entry {i}"
                break
            base = read_type_name(u, base_ti, max_len)
            if not base:
                log_debug(f"vmi typeinfo 0x{ti:x}: base {i} at 0x{base_ti:x} has no name")
                continue
            info.base_classes.append(BaseClassInfo(base, off_flags >> BASE_OFFSET_SHIFT,
                                                   bool(off_flags & BASE_IS_VIRTUAL)))

        info.has_multiple_inheritance = count > 1
        info.has_virtual_inheritance = any(b.is_virtual for b in info.base_classes)

    return info
