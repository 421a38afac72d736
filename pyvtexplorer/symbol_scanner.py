"""
VTable Explorer symbol scanner
Classifies symbol-table entries as vtables and recovers a display class name for each
"""

from .vte_config import vte_config
from .vte_log import log_info, log_debug

ABI_ITANIUM = "itanium"
ABI_MSVC = "msvc"

ITANIUM_VTABLE_PREFIX = "_ZTV"
MSVC_VTABLE_PREFIX = "??_7"
MSVC_VTABLE_SUFFIX = "@@6B@"

# length-prefixed components longer than this are treated as garbage
MAX_COMPONENT_LENGTH = 1024

class VTableCandidate(object):
    """A symbol that names a vtable"""

    def __init__(self, address, symbol, abi, class_name):
        self.address = address
        self.symbol = symbol
        self.abi = abi
        self.class_name = class_name

    @property
    def is_windows(self):
        return self.abi == ABI_MSVC

    @property
    def display_name(self):
        return f"{self.class_name} ({'Windows/MSVC' if self.is_windows else 'Linux/GCC'})"

    def __repr__(self):
        return f"VTableCandidate({self.class_name!r}, 0x{self.address:x}, {self.abi})"

def is_valid_class_name(name, max_len=512):
    """Reject names that are obviously the product of a broken extraction"""
    if not name or len(name) > max_len:
        return False

    # namespaces may be lowercase, the class itself may not
    last = name.rsplit("::", 1)[-1]
    if not last:
        return False

    first = last[0]
    if not (first.isascii() and first.isupper()) and first != '_':
        return False

    if not any(c.isalnum() or c == '_' for c in last):
        return False

    # "EE", "___" and friends are mangling residue
    if len(last) > 1 and last == first * len(last):
        return False

    return True

def read_length_prefixed(s, pos, cap=MAX_COMPONENT_LENGTH):
    """Parse <decimal length><bytes> at pos, returning (component, next_pos)"""
    start = pos
    while pos < len(s) and s[pos].isdigit():
        pos += 1
    if pos == start or pos - start > len(str(cap)):
        return None, start
    length = int(s[start:pos])
    if length <= 0 or length >= cap or pos + length > len(s):
        return None, start
    return s[pos:pos + length], pos + length

def _strip_itanium_artifacts(name):
    """'E18CSVCMsg_HLTVStatusL13...' -> 'CSVCMsg_HLTVStatus'"""
    first_upper = None
    for i, c in enumerate(name):
        if c.isupper():
            first_upper = i
            break
    if first_upper is None:
        return ""

    end = len(name)
    for i in range(first_upper, len(name) - 1):
        if name[i] == 'L' and name[i + 1].isdigit():
            end = i
            break
    return name[first_upper:end]

def itanium_vtable_name(mangled, max_len=512):
    """Class name from the part of an Itanium vtable symbol after _ZTV"""
    if not mangled:
        return ""

    if mangled[0] == 'N':
        # nested name: the last component names the class
        pos = 1
        last = ""
        while pos < len(mangled) and mangled[pos] != 'E':
            if mangled[pos].isdigit():
                comp, nxt = read_length_prefixed(mangled, pos)
                if comp is None:
                    break
                last = comp
                pos = nxt
            else:
                # cv-qualifiers, substitutions and template args are skipped
                pos += 1
        return last if is_valid_class_name(last, max_len) else ""

    if mangled[0].isdigit():
        name, _ = read_length_prefixed(mangled, 0)
        if name is None:
            return ""
        if is_valid_class_name(name, max_len):
            return name
        cleaned = _strip_itanium_artifacts(name)
        if is_valid_class_name(cleaned, max_len):
            return cleaned
    return ""

def normalize_msvc_nested_class(name):
    """'Inner@Outer@ns' -> 'ns::Outer::Inner'"""
    if '@' not in name:
        return name
    parts = [p for p in name.split('@') if p]
    return "::".join(reversed(parts))

def clean_msvc_decorated_name(name, strip_kind=False):
    """Drop template, hashed-scope, and class-kind markers from an MSVC name"""
    marker = name.rfind("?$")
    if marker != -1:
        name = name[marker + 2:]

    while True:
        pos = name.find("::$")
        if pos == -1:
            break
        end = name.find("::", pos + 2)
        if end == -1:
            break
        name = name[:pos] + name[end:]

    if name.startswith('$') and len(name) > 3:
        i = 1
        while i < len(name) and name[i] in "0123456789ABCDEFabcdef":
            i += 1
        if 1 < i < len(name):
            name = name[i:]

    if strip_kind and len(name) > 1 and name[0] in "VU" and name[1].isupper():
        name = name[1:]
    return name

def msvc_decorated_to_name(body):
    """Decode the scope-reversed '@' body of an MSVC decorated name"""
    if body.startswith("?$"):
        # template arguments are not decoded, the template name is kept
        end = body.find('@', 2)
        return body[2:end] if end != -1 else body[2:]
    return normalize_msvc_nested_class(clean_msvc_decorated_name(body))

def msvc_vtable_name(symbol, max_len=512):
    """Class name from a ??_7...@@6B@ symbol"""
    body = symbol[len(MSVC_VTABLE_PREFIX):]
    end = body.find("@@6B")
    if end == -1:
        end = body.find("@@")
    if end == -1:
        return ""
    name = msvc_decorated_to_name(body[:end])
    return name if is_valid_class_name(name, max_len) else ""

def class_from_demangled(demangled, max_len=512):
    """Returns (class_name, is_windows) from a demangled vtable symbol"""
    pos = demangled.find("vtable for")
    if pos != -1:
        name = demangled[pos + len("vtable for"):].strip().strip("'")
        if is_valid_class_name(name, max_len):
            return name, False

    if "vftable" in demangled:
        const_pos = demangled.find("const ")
        vft_pos = demangled.find("::`vftable'")
        if const_pos != -1 and vft_pos > const_pos:
            name = demangled[const_pos + 6:vft_pos]
            if is_valid_class_name(name, max_len):
                return name, True
        return "", True
    return "", False

def extract_class_name(symbol, u, max_len=512):
    """Returns (class_name, is_windows); class_name is empty when nothing usable was found"""
    sym = symbol
    if len(sym) > 4 and sym.endswith("_ptr"):
        sym = sym[:-4]

    is_windows = False
    demangled = u.demangle(sym)
    if demangled:
        name, is_windows = class_from_demangled(demangled, max_len)
        if name:
            return name, is_windows

    if sym.startswith(ITANIUM_VTABLE_PREFIX):
        return itanium_vtable_name(sym[len(ITANIUM_VTABLE_PREFIX):], max_len), False

    if sym.startswith(MSVC_VTABLE_PREFIX):
        return msvc_vtable_name(sym, max_len), True

    return "", is_windows

def classify_symbol(addr, symbol, u, config):
    """Build a VTableCandidate for one symbol, or None"""
    max_len = config.max_class_name_length

    if symbol.startswith(ITANIUM_VTABLE_PREFIX):
        class_name, _ = extract_class_name(symbol, u, max_len)
        abi = ABI_ITANIUM
    elif symbol.startswith(MSVC_VTABLE_PREFIX):
        class_name, _ = extract_class_name(symbol, u, max_len)
        if not class_name and MSVC_VTABLE_SUFFIX in symbol:
            class_name = msvc_decorated_to_name(
                symbol[len(MSVC_VTABLE_PREFIX):symbol.find(MSVC_VTABLE_SUFFIX)])
        abi = ABI_MSVC
    elif "vftable" in symbol or "vtbl" in symbol:
        class_name, is_windows = extract_class_name(symbol, u, max_len)
        if not class_name:
            class_name = symbol
            is_windows = True
        abi = ABI_MSVC if is_windows else ABI_ITANIUM
    else:
        return None

    if not is_valid_class_name(class_name, max_len):
        log_debug(f"Rejected vtable symbol '{symbol}' at 0x{addr:x}: no usable class name")
        return None
    return VTableCandidate(addr, symbol, abi, class_name)

def find_vtables(symbols, u, config=None):
    """Scan (address, name) pairs for vtables, one per class, sorted by class name"""
    if config is None:
        config = vte_config()

    seen = {}
    seen_addrs = set()
    scanned = 0
    for addr, symbol in symbols:
        scanned += 1
        if not symbol:
            continue
        cand = classify_symbol(addr, symbol, u, config)
        if cand is None:
            continue
        # first occurrence wins, for names and for addresses
        if cand.class_name in seen or addr in seen_addrs:
            continue
        seen[cand.class_name] = cand
        seen_addrs.add(addr)

    result = sorted(seen.values(), key=lambda c: c.class_name)
    log_info(f"Scanned {scanned} symbols, found {len(result)} vtables")
    return result
