"""
Parsed inheritance records shared by the MSVC and Itanium parsers
"""

CONFIDENCE_NONE = "none"
CONFIDENCE_HEURISTIC = "heuristic"
CONFIDENCE_VALIDATED = "validated"

class BaseClassInfo(object):

    def __init__(self, class_name, offset=0, is_virtual=False, confidence=CONFIDENCE_VALIDATED):
        self.class_name = class_name
        self.offset = offset
        self.is_virtual = is_virtual
        self.confidence = confidence

    def __eq__(self, other):
        if not isinstance(other, BaseClassInfo):
            return NotImplemented
        return (self.class_name, self.offset, self.is_virtual) == (other.class_name, other.offset, other.is_virtual)

    def __hash__(self):
        return hash((self.class_name, self.offset, self.is_virtual))

    def __repr__(self):
        v = " virtual" if self.is_virtual else ""
        return f"BaseClassInfo({self.class_name!r}, {self.offset}{v})"

class InheritanceInfo(object):
    """
    Result of parsing the RTTI attached to one vtable.
    found is False when no RTTI could be located or validated; reason then says why.
    """

    def __init__(self, class_name=""):
        self.class_name = class_name
        self.base_classes = []
        self.has_multiple_inheritance = False
        self.has_virtual_inheritance = False
        self.found = False
        self.confidence = CONFIDENCE_NONE
        self.reason = ""

    @property
    def base_names(self):
        return [b.class_name for b in self.base_classes]

    def not_found(self, reason):
        self.found = False
        self.confidence = CONFIDENCE_NONE
        self.reason = reason
        return self

    def __repr__(self):
        flags = ("M" if self.has_multiple_inheritance else "") + ("V" if self.has_virtual_inheritance else "")
        return f"InheritanceInfo({self.class_name!r}, bases={self.base_names}, flags={flags!r}, {self.confidence})"
