"""
VTable Explorer exceptions

Malformed binary data never raises; these are for caller misuse only.
"""

class VTExplorerError(Exception):
    """Base class for all VTable Explorer errors"""
    pass

class UnknownClassError(VTExplorerError, KeyError):
    """A class name that is not part of the current hierarchy"""

    def __init__(self, class_name):
        self.class_name = class_name
        super().__init__(f"Unknown class: {class_name}")

    def __str__(self):
        return f"Unknown class: {self.class_name}"

class SelectionError(VTExplorerError, IndexError):
    """A positional selection outside of the class list"""

    def __init__(self, index, count):
        self.index = index
        self.count = count
        super().__init__(f"Selection {index} out of range (0..{count - 1})")

class NoHierarchyError(VTExplorerError):
    """Query issued before any hierarchy has been published"""
    pass

class AnalysisCancelled(VTExplorerError):
    """Raised by the builder when the cancel check fires"""

    def __init__(self, processed, total):
        self.processed = processed
        self.total = total
        super().__init__(f"Cancelled after {processed} of {total} vtables")
