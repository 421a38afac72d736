"""
VTable Explorer
Session object tying the scanners, RTTI parsers and hierarchy builder to one image.
Everything learnt about the image (RTTI format, parsed RTTI) lives here until reset().
"""

from .vte_image import Demangler, FunctionRegistry
from .vte_config import vte_config
from .vte_errors import NoHierarchyError, AnalysisCancelled
from .vte_log import log_info, log_warn
from . import vte_utils
from . import symbol_scanner
from . import rtti_detector
from . import rtti_parser
from . import vtable_scanner
from . import class_hierarchy
from . import vtable_comparison
from . import lib_classes_checker

class VTExplorer(object):

    def __init__(self, image, symbols=None, demangler=None, functions=None, config=None):
        if demangler is None and isinstance(image, Demangler):
            demangler = image
        if functions is None and isinstance(image, FunctionRegistry):
            functions = image

        self.config = config if config is not None else vte_config()
        self.image = image
        self.u = vte_utils.utils(image, symbols, demangler, functions)
        self.detector = rtti_detector.rtti_detector(self.u, self.config)
        self.parser = rtti_parser.rtti_parser(self.u, self.detector, self.config)
        self.scanner = vtable_scanner.vtable_scanner(self.u, self.config, functions)
        self.snapshot = None
        self.version = 0

    @property
    def rtti_config(self):
        return self.detector.rtti_config

    def _require_snapshot(self):
        if self.snapshot is None:
            raise NoHierarchyError("No class hierarchy yet, call refresh_hierarchy() first")
        return self.snapshot

    def _effective_vtable(self, node):
        if node.is_synthetic:
            return node.forward_vtable
        return node.vtable_address

    def find_vtables(self):
        return symbol_scanner.find_vtables(self.u.symbols.symbols(), self.u, self.config)

    def refresh_hierarchy(self, cancel_check=None):
        """
        Rebuild the class hierarchy from the image and publish it.
        Returns the new snapshot, or None if cancel_check fired; the previous snapshot
        stays published in that case.
        """
        candidates = self.find_vtables()
        if not candidates:
            log_warn("No vtable symbols found. The image might be stripped or not C++.")

        try:
            snapshot = class_hierarchy.build_hierarchy(candidates, self.parser, self.scanner,
                                                       cancel_check, self.version + 1)
        except AnalysisCancelled as e:
            log_warn(f"Hierarchy refresh cancelled: {e}")
            return None

        if self.config.libflag:
            lib_classes_checker.set_libflag(snapshot, self.config.lib_rules)

        self.version = snapshot.version
        self.snapshot = snapshot
        return snapshot

    def list_classes(self):
        return list(self._require_snapshot().nodes)

    def class_at(self, n):
        return self._require_snapshot().at(n)

    def get_class(self, name):
        return self._require_snapshot().node(name)

    def get_entries(self, name):
        """Valid slots of a class's vtable; synthetic classes show their forwarding vtable"""
        snapshot = self._require_snapshot()
        node = snapshot.node(name)
        vt = self._effective_vtable(node)
        if vt is None:
            return []
        return self.scanner.get_vtable_entries(vt, node.is_windows, snapshot.vtable_addresses)

    def compare(self, derived, base):
        snapshot = self._require_snapshot()
        d = snapshot.node(derived)
        b = snapshot.node(base)
        d_vt = self._effective_vtable(d)
        b_vt = self._effective_vtable(b)
        if d_vt is None or b_vt is None:
            log_warn(f"Cannot compare {derived} with {base}: no vtable to read")
            return vtable_comparison.VTableComparison(derived, base, d_vt, b_vt)
        return vtable_comparison.compare_vtables(self.scanner, d_vt, b_vt, d.is_windows,
                                                 snapshot.vtable_addresses, derived, base,
                                                 b.is_windows)

    def compare_with_base(self, name):
        """Compare against the first base that owns a vtable, or None if there is none"""
        snapshot = self._require_snapshot()
        node = snapshot.node(name)
        for base in node.base_names:
            b = snapshot.get(base)
            if b is not None and not b.is_synthetic:
                return self.compare(name, base)
        log_info(f"{name} has no base class with a vtable")
        return None

    def ancestors(self, name):
        return self._require_snapshot().ancestors(name)

    def descendants(self, name):
        return self._require_snapshot().descendants(name)

    def lineage(self, name):
        return self._require_snapshot().lineage(name)

    def annotate(self, name):
        snapshot = self._require_snapshot()
        node = snapshot.node(name)
        if node.is_synthetic:
            log_warn(f"{name} has no vtable of its own, annotate {node.forward_class} instead")
            return 0
        return self.scanner.annotate_vtable(node.vtable_address, node.is_windows,
                                            snapshot.vtable_addresses, name)

    def annotate_all(self, cancel_check=None):
        """Annotate every real class; returns (classes, slots) done, also when cancelled"""
        snapshot = self._require_snapshot()
        classes = 0
        slots = 0
        for node in snapshot:
            if node.is_synthetic:
                continue
            if cancel_check is not None and cancel_check():
                log_warn(f"Annotation cancelled after {classes} classes")
                break
            slots += self.scanner.annotate_vtable(node.vtable_address, node.is_windows,
                                                  snapshot.vtable_addresses, node.class_name)
            classes += 1
        return classes, slots

    def reset(self):
        """Forget the RTTI format, the parsed RTTI and the published hierarchy"""
        self.detector.reset()
        self.parser.clear_cache()
        self.snapshot = None

    def show(self):
        snapshot = self.snapshot
        if not snapshot:
            log_info("No classes to display")
            return

        log_info(f"Class hierarchy v{snapshot.version}: {len(snapshot)} classes, {self.rtti_config}")
        for node in snapshot:
            if node.is_synthetic:
                where = f"synthetic -> {node.forward_class or '?'}"
            else:
                where = f"vtable at {node.vtable_address:#x}"
            lib = " [lib]" if node.libflag == node.LIBLIB else ""
            log_info(f"  {node.class_name}{lib}: {where}, {node.func_count} funcs "
                     f"({node.pure_virtual_count} pure) {node.flags} {node.rtti_confidence}")
            for b in node.base_classes:
                v = " virtual" if b.is_virtual else ""
                log_info(f"    base {b.class_name} at +{b.offset:#x}{v}")
