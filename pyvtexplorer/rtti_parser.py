"""
RTTI parser front end
Picks the MSVC or Itanium reader once per image from the detected RTTIConfig and memoizes
the result for every vtable it is asked about.
"""

from .msvc_rtti import locate_col, parse_msvc_col
from .gcc_rtti import parse_gcc_typeinfo, read_type_name
from .rtti_info import InheritanceInfo, CONFIDENCE_VALIDATED, CONFIDENCE_HEURISTIC
from .vte_config import vte_config
from .vte_log import log_debug

class msvc_strategy(object):
    """vtable -> COL -> CHD -> BCA"""

    def __init__(self, u, rtti_config, config):
        self.u = u
        self.rtti_config = rtti_config
        self.config = config

    def parse_rtti_at(self, vtable, class_name=""):
        col = locate_col(self.u, vtable, self.rtti_config)
        if not self.u.is_valid_addr(col):
            return InheritanceInfo(class_name).not_found(f"no COL referenced from vtable 0x{vtable:x}")
        return parse_msvc_col(self.u, col, class_name, self.config.max_msvc_bases,
                              self.config.max_rtti_string_length)

def short_name(name):
    """'ns::Vector<int>' -> 'Vector'"""
    return name.split("<", 1)[0].rsplit("::", 1)[-1]

class itanium_strategy(object):
    """vtable -> typeinfo; the detected slot first, then the other usual places"""

    def __init__(self, u, rtti_config, config):
        self.u = u
        self.rtti_config = rtti_config
        self.config = config

    def candidate_offsets(self):
        ps = self.u.PTR_SIZE
        offsets = []
        for off in (self.rtti_config.rtti_offset, ps, -ps, -2 * ps):
            if off not in offsets:
                offsets.append(off)
        return offsets

    def describes(self, ti, class_name):
        """False when the typeinfo at ti names some other class"""
        if not class_name:
            return True
        name = read_type_name(self.u, ti, self.config.max_rtti_string_length)
        return not name or short_name(name) == short_name(class_name)

    def parse_rtti_at(self, vtable, class_name=""):
        u = self.u
        heuristic = None

        for off in self.candidate_offsets():
            ti = u.get_ptr(vtable + off)
            if not u.is_valid_addr(ti) or u.is_executable(ti):
                continue
            # the words around a vtable may belong to a neighbouring typeinfo
            if not self.describes(ti, class_name):
                log_debug(f"Skipped typeinfo 0x{ti:x} next to vtable 0x{vtable:x}: not {class_name}")
                continue
            info = parse_gcc_typeinfo(u, ti, class_name, self.config.max_itanium_bases,
                                      self.config.max_rtti_string_length)
            if not info.found:
                continue
            if info.confidence == CONFIDENCE_VALIDATED:
                return info
            if info.confidence == CONFIDENCE_HEURISTIC and heuristic is None and info.base_classes:
                heuristic = info

        if heuristic is not None:
            return heuristic
        return InheritanceInfo(class_name).not_found(f"no typeinfo found around vtable 0x{vtable:x}")

def make_strategy(u, rtti_config, config):
    if rtti_config.is_msvc:
        return msvc_strategy(u, rtti_config, config)
    return itanium_strategy(u, rtti_config, config)

class rtti_parser(object):
    """Per-session inheritance memo"""

    def __init__(self, u, detector, config=None):
        self.u = u
        self.detector = detector
        self.config = config if config is not None else vte_config()
        self.strategy = None
        self.cache = {}

    def get_inheritance_info(self, vtable, class_name=""):
        info = self.cache.get(vtable)
        if info is not None:
            return info

        if self.strategy is None:
            rtti_config = self.detector.get_config(vtable)
            self.strategy = make_strategy(self.u, rtti_config, self.config)

        info = self.strategy.parse_rtti_at(vtable, class_name)
        if not info.found:
            log_debug(f"No RTTI for vtable 0x{vtable:x} ({class_name}): {info.reason}")
        self.cache[vtable] = info
        return info

    def clear_cache(self):
        self.cache.clear()
        self.strategy = None
