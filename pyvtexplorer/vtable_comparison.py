"""
VTable comparison
Lines up a derived vtable against a base vtable by slot index and says, for every derived
slot, whether it is inherited, overridden or new.
"""

from .vte_log import log_debug

INHERITED = "Inherited"
OVERRIDDEN = "Overridden"
NEW_VIRTUAL = "New Virtual"
PURE_TO_IMPL = "Pure->Impl"
IMPL_TO_PURE = "Impl->Pure"

OVERRIDE_STATUSES = (OVERRIDDEN, PURE_TO_IMPL, IMPL_TO_PURE)

class ComparisonEntry(object):

    def __init__(self, index, derived, base=None, status=NEW_VIRTUAL):
        self.index = index
        self.derived = derived
        self.base = base
        self.status = status
        self.derived_func_name = ""
        self.base_func_name = ""

    @property
    def is_override(self):
        return self.status in OVERRIDE_STATUSES

    def __repr__(self):
        return f"ComparisonEntry({self.index}, {self.status})"

class VTableComparison(object):

    def __init__(self, derived_class="", base_class="", derived_vtable=None, base_vtable=None):
        self.derived_class = derived_class
        self.base_class = base_class
        self.derived_vtable = derived_vtable
        self.base_vtable = base_vtable
        self.entries = []
        self.inherited_count = 0
        self.overridden_count = 0
        self.new_virtual_count = 0

    @property
    def counts(self):
        return (self.inherited_count, self.overridden_count, self.new_virtual_count)

    def add(self, entry):
        self.entries.append(entry)
        if entry.status == INHERITED:
            self.inherited_count += 1
        elif entry.status == NEW_VIRTUAL:
            self.new_virtual_count += 1
        else:
            self.overridden_count += 1

    def __repr__(self):
        return (f"VTableComparison({self.derived_class!r} vs {self.base_class!r}: "
                f"inherited={self.inherited_count}, overridden={self.overridden_count}, "
                f"new={self.new_virtual_count})")

def entry_status(derived, base):
    if base is None:
        return NEW_VIRTUAL
    if derived.target_address == base.target_address:
        return INHERITED
    if base.is_pure_virtual and not derived.is_pure_virtual:
        return PURE_TO_IMPL
    if not base.is_pure_virtual and derived.is_pure_virtual:
        return IMPL_TO_PURE
    return OVERRIDDEN

def compare_entries(derived_entries, base_entries, result=None, u=None):
    """Classify every derived entry; base entries past the derived table are ignored"""
    if result is None:
        result = VTableComparison()

    base_map = {e.index: e for e in base_entries}
    for d in derived_entries:
        b = base_map.get(d.index)
        c = ComparisonEntry(d.index, d, b, entry_status(d, b))
        if u is not None:
            c.derived_func_name = u.get_name(d.target_address) or ""
            if b is not None:
                c.base_func_name = u.get_name(b.target_address) or ""
        result.add(c)
    return result

def compare_vtables(scanner, derived_vt, base_vt, is_windows, sorted_addrs,
                    derived_class="", base_class="", base_is_windows=None):
    if base_is_windows is None:
        base_is_windows = is_windows
    result = VTableComparison(derived_class, base_class, derived_vt, base_vt)
    derived_entries = scanner.get_vtable_entries(derived_vt, is_windows, sorted_addrs)
    base_entries = scanner.get_vtable_entries(base_vt, base_is_windows, sorted_addrs)
    compare_entries(derived_entries, base_entries, result, scanner.u)
    log_debug(f"Compared {derived_class or hex(derived_vt)} with {base_class or hex(base_vt)}: "
              f"{result.counts}")
    return result
