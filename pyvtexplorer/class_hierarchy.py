"""
Class hierarchy assembly
Turns the per-vtable RTTI records into one immutable snapshot. Bases that have no vtable
of their own (optimised away or only reachable through RTTI) become synthetic nodes that
forward to the nearest real ancestor.
"""

from .rtti_info import BaseClassInfo, CONFIDENCE_NONE
from .symbol_scanner import ABI_ITANIUM
from .vte_errors import UnknownClassError, SelectionError, AnalysisCancelled
from .vte_log import log_debug, log_info

class ClassNode(object):

    LIBUNK = 0
    LIBNOTLIB = 1
    LIBLIB = 2

    def __init__(self, class_name, vtable_address=None, abi=ABI_ITANIUM):
        self.id = None
        self.class_name = class_name
        self.vtable_address = vtable_address
        self.abi = abi
        self.func_count = 0
        self.pure_virtual_count = 0
        self.base_classes = []
        self.derived_classes = set()
        self.has_multiple_inheritance = False
        self.has_virtual_inheritance = False
        self.rtti_confidence = CONFIDENCE_NONE
        self.forward_class = None
        self.forward_vtable = None
        self.libflag = self.LIBUNK

    @property
    def is_synthetic(self):
        return self.vtable_address is None

    @property
    def is_windows(self):
        return self.abi != ABI_ITANIUM

    @property
    def is_abstract(self):
        return not self.is_synthetic and self.pure_virtual_count > 0

    @property
    def base_names(self):
        return [b.class_name for b in self.base_classes]

    @property
    def flags(self):
        f = ""
        if self.has_multiple_inheritance:
            f += "M"
        if self.has_virtual_inheritance:
            f += "V"
        return f

    def __repr__(self):
        where = f"-> {self.forward_class}" if self.is_synthetic else f"0x{self.vtable_address:x}"
        return f"ClassNode({self.class_name!r}, {where}, bases={self.base_names})"

class HierarchySnapshot(object):
    """Nodes sorted by name in an arena; ids are list positions and never change"""

    def __init__(self, nodes, version=0):
        self.version = version
        self.nodes = sorted(nodes, key=lambda n: n.class_name)
        self.ids = {}
        for i, node in enumerate(self.nodes):
            node.id = i
            self.ids[node.class_name] = i
        self.vtable_addresses = sorted(n.vtable_address for n in self.nodes if not n.is_synthetic)

    def __len__(self):
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)

    def __contains__(self, name):
        return name in self.ids

    def get(self, name):
        i = self.ids.get(name)
        return self.nodes[i] if i is not None else None

    def node(self, name):
        i = self.ids.get(name)
        if i is None:
            raise UnknownClassError(name)
        return self.nodes[i]

    def at(self, index):
        if index < 0 or index >= len(self.nodes):
            raise SelectionError(index, len(self.nodes))
        return self.nodes[index]

    def _parents(self, node):
        if node.is_synthetic:
            return [node.forward_class] if node.forward_class else []
        return node.base_names

    def ancestors(self, name):
        """Every class reachable upwards from name, excluding name itself"""
        start = self.node(name)
        seen = {start.id}
        result = []
        work = [start]
        while work:
            node = work.pop()
            for parent in self._parents(node):
                pid = self.ids.get(parent)
                if pid is None or pid in seen:
                    continue
                seen.add(pid)
                result.append(parent)
                work.append(self.nodes[pid])
        return sorted(result)

    def descendants(self, name):
        """Every class reachable downwards from name, excluding name itself"""
        start = self.node(name)
        seen = {start.id}
        result = []
        work = [start]
        while work:
            node = work.pop()
            for child in node.derived_classes:
                cid = self.ids.get(child)
                if cid is None or cid in seen:
                    continue
                seen.add(cid)
                result.append(child)
                work.append(self.nodes[cid])
        return sorted(result)

    def lineage(self, name):
        return sorted(set(self.ancestors(name)) | {name} | set(self.descendants(name)))

    def roots(self):
        return [n for n in self.nodes if not n.base_classes and not n.forward_class]

def resolve_base_name(name, real):
    """Map an RTTI base name onto a vtable-backed class name when only the scope differs"""
    if name in real:
        return name
    short = name.rsplit("::", 1)[-1]
    if short != name and short in real:
        return short
    return name

def _resolve_bases(node, real):
    bases = []
    seen = set()
    for b in node.base_classes:
        name = resolve_base_name(b.class_name, real)
        if name == node.class_name:
            log_debug(f"{node.class_name} lists itself as a base, dropped")
            continue
        if name in seen:
            continue
        seen.add(name)
        bases.append(BaseClassInfo(name, b.offset, b.is_virtual, b.confidence))
    node.base_classes = bases

def _forwarding_ancestor(refs, real):
    """First real class listed after the missing base, in the first list that has one"""
    for node, j in refs:
        for b in node.base_classes[j + 1:]:
            if b.class_name in real:
                return real[b.class_name]
    return None

def link_nodes(real_nodes):
    """Resolve bases, synthesize missing ones and fill derived sets; returns all nodes"""
    real = {n.class_name: n for n in real_nodes}
    ordered = sorted(real_nodes, key=lambda n: n.class_name)

    for node in ordered:
        _resolve_bases(node, real)

    mentions = {}
    for node in ordered:
        for j, b in enumerate(node.base_classes):
            if b.class_name not in real:
                mentions.setdefault(b.class_name, []).append((node, j))

    synthetic = {}
    for name, refs in mentions.items():
        syn = ClassNode(name, None, refs[0][0].abi)
        fwd = _forwarding_ancestor(refs, real)
        if fwd is not None:
            syn.forward_class = fwd.class_name
            syn.forward_vtable = fwd.vtable_address
            syn.func_count = fwd.func_count
            syn.pure_virtual_count = fwd.pure_virtual_count
        synthetic[name] = syn

    everything = dict(real)
    everything.update(synthetic)
    for node in ordered:
        for b in node.base_classes:
            everything[b.class_name].derived_classes.add(node.class_name)

    if synthetic:
        log_debug(f"Synthesized {len(synthetic)} intermediate classes: {sorted(synthetic)}")
    return list(everything.values())

def build_hierarchy(candidates, parser, scanner, cancel_check=None, version=0):
    """
    Parse every candidate vtable and assemble a HierarchySnapshot.
    cancel_check is polled before each vtable; AnalysisCancelled is raised when it fires.
    """
    total = len(candidates)
    sorted_addrs = sorted(c.address for c in candidates)
    real_nodes = []

    for i, cand in enumerate(candidates):
        if cancel_check is not None and cancel_check():
            raise AnalysisCancelled(i, total)

        info = parser.get_inheritance_info(cand.address, cand.class_name)
        stats = scanner.get_vtable_stats(cand.address, cand.is_windows, sorted_addrs)

        node = ClassNode(cand.class_name, cand.address, cand.abi)
        node.func_count = stats.func_count
        node.pure_virtual_count = stats.pure_virtual_count
        node.base_classes = list(info.base_classes)
        node.has_multiple_inheritance = info.has_multiple_inheritance
        node.has_virtual_inheritance = info.has_virtual_inheritance
        node.rtti_confidence = info.confidence
        real_nodes.append(node)

    snapshot = HierarchySnapshot(link_nodes(real_nodes), version)
    log_info(f"Built hierarchy v{version}: {total} vtables, "
             f"{len(snapshot) - total} synthetic classes")
    return snapshot
