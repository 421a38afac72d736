"""
VTable slot scanner
Walks the pointer slots of a vtable up to the next known vtable. Only valid slots receive
an index, so two vtables that differ by padding or omitted entries still line up.
"""

import bisect

from .vte_config import vte_config
from .vte_utils import is_auto_func_name
from .vte_log import log_debug, log_info

PURE_VIRTUAL_MARKERS = ("purecall", "__cxa_pure_virtual")
TYPEINFO_MARKERS = ("_ZTI", "typeinfo")

# push rbp/ebp, REX.W, REX, REX.B
PROLOGUE_OPCODES = (0x55, 0x48, 0x40, 0x41)

SLOT_INVALID = 0
SLOT_VALID = 1
SLOT_PURE = 2

class VTableEntry(object):

    def __init__(self, index, slot_address, target_address, is_pure_virtual=False):
        self.index = index
        self.slot_address = slot_address
        self.target_address = target_address
        self.is_pure_virtual = is_pure_virtual

    def __eq__(self, other):
        if not isinstance(other, VTableEntry):
            return NotImplemented
        return (self.index, self.slot_address, self.target_address, self.is_pure_virtual) == \
               (other.index, other.slot_address, other.target_address, other.is_pure_virtual)

    def __repr__(self):
        pv = " pure" if self.is_pure_virtual else ""
        return f"VTableEntry({self.index}, 0x{self.slot_address:x} -> 0x{self.target_address:x}{pv})"

class VTableStats(object):

    def __init__(self, func_count=0, pure_virtual_count=0):
        self.func_count = func_count
        self.pure_virtual_count = pure_virtual_count

    def __repr__(self):
        return f"VTableStats(func_count={self.func_count}, pure_virtual_count={self.pure_virtual_count})"

def find_next_vtable(vtable, sorted_addrs):
    """Smallest known vtable address above vtable, or None"""
    idx = bisect.bisect_right(sorted_addrs, vtable)
    if idx < len(sorted_addrs):
        return sorted_addrs[idx]
    return None

def is_known_vtable(addr, sorted_addrs):
    idx = bisect.bisect_left(sorted_addrs, addr)
    return idx < len(sorted_addrs) and sorted_addrs[idx] == addr

class vtable_scanner(object):

    def __init__(self, u, config=None, functions=None):
        self.u = u
        self.config = config if config is not None else vte_config()
        self.functions = functions if functions is not None else u.functions

    def detect_vfunc_start_offset(self, vtable, is_windows):
        """MSVC vtables start with the first function; Itanium ones after offset-to-top and typeinfo"""
        if is_windows:
            return 0

        u = self.u
        for i in range(self.config.max_vfunc_search_depth):
            slot = vtable + i * u.PTR_SIZE
            if not u.is_valid_addr(slot):
                continue
            if u.is_executable(u.get_ptr(slot)):
                return i
        return self.config.default_vfunc_start

    def classify_target(self, target):
        u = self.u
        if not target or not u.is_valid_addr(target):
            return SLOT_INVALID

        name = u.get_name(target)
        if name:
            if any(m in name for m in TYPEINFO_MARKERS):
                return SLOT_INVALID
            if any(m in name for m in PURE_VIRTUAL_MARKERS):
                return SLOT_PURE

        if not u.is_executable(target):
            return SLOT_INVALID
        if u.is_function(target):
            return SLOT_VALID
        if is_auto_func_name(name):
            return SLOT_VALID
        if u.get_byte(target) in PROLOGUE_OPCODES:
            return SLOT_VALID
        return SLOT_INVALID

    def walk(self, vtable, is_windows, sorted_addrs):
        """Yield (entry, slot_number) for every valid slot"""
        u = self.u
        ps = u.PTR_SIZE
        start = self.detect_vfunc_start_offset(vtable, is_windows)

        max_check = self.config.max_entries
        next_vtable = find_next_vtable(vtable, sorted_addrs)
        if next_vtable is not None:
            max_check = min(max_check, (next_vtable - vtable) // ps)

        consecutive_invalid = 0
        index = 0
        for i in range(start, max_check):
            slot = vtable + i * ps
            if not u.is_valid_addr(slot):
                break
            if slot != vtable and is_known_vtable(slot, sorted_addrs):
                log_debug(f"vtable 0x{vtable:x} runs into vtable 0x{slot:x}")
                break

            target = u.get_ptr(slot)
            kind = self.classify_target(target)
            if kind == SLOT_INVALID:
                consecutive_invalid += 1
                if consecutive_invalid >= self.config.max_consecutive_invalid:
                    break
                continue

            consecutive_invalid = 0
            yield VTableEntry(index, slot, target, kind == SLOT_PURE), i
            index += 1

    def get_vtable_stats(self, vtable, is_windows, sorted_addrs):
        stats = VTableStats()
        for entry, _ in self.walk(vtable, is_windows, sorted_addrs):
            stats.func_count += 1
            if entry.is_pure_virtual:
                stats.pure_virtual_count += 1
        return stats

    def get_vtable_entries(self, vtable, is_windows, sorted_addrs):
        return [entry for entry, _ in self.walk(vtable, is_windows, sorted_addrs)]

    def annotate_vtable(self, vtable, is_windows, sorted_addrs, class_name=""):
        """Comment every valid slot with its index and register undiscovered functions"""
        u = self.u
        start = self.detect_vfunc_start_offset(vtable, is_windows)
        annotated = 0
        registered = 0

        for entry, _ in self.walk(vtable, is_windows, sorted_addrs):
            target = entry.target_address
            if (self.functions is not None and self.config.register_functions
                    and u.is_executable(target) and not self.functions.is_function(target)):
                self.functions.add_function(target)
                registered += 1

            byte_offset = (start + entry.index) * u.PTR_SIZE
            if self.functions is not None:
                self.functions.set_comment(entry.slot_address, f"index: {entry.index} | offset: {byte_offset}")
            annotated += 1

        log_info(f"Annotated {annotated} slots of {class_name or 'vtable'} at 0x{vtable:x}"
                 f" ({registered} new functions)")
        return annotated
