"""
VTable Explorer library classes checker
Flags standard library classes (STL, MFC, ATL, Boost, ...) among the recovered classes
"""

import json
import re

from .vte_config import DEFAULT_LIB_RULES
from .vte_log import log_debug, log_info, log_warn, log_error

# used when the rules file cannot be read
FALLBACK_RULES = {
    "=": [],
    "startswith": ["std::", "boost::", "ATL::", "CWin", "CMF"],
    "regex": [],
}

class lib_classes_checker_t(object):

    def __init__(self, rules=None):
        if rules is None:
            rules = DEFAULT_LIB_RULES
        self.lib_class_ptns = {}
        try:
            with open(rules) as f:
                self.lib_class_ptns = json.load(f)
        except (OSError, ValueError) as e:
            log_error(f"Failed to load library class patterns from {rules}: {e}")
            self.lib_class_ptns = dict(FALLBACK_RULES)

        self.regexes = []
        for ptn in self.lib_class_ptns.get("regex", []):
            try:
                self.regexes.append(re.compile(ptn))
            except re.error as e:
                log_warn(f"Invalid regex pattern '{ptn}': {e}")

    def does_class_startwith(self, name, ptns):
        for ptn in ptns:
            if name.startswith(ptn):
                return True
        return False

    def does_class_match_regex_ptns(self, name):
        for r in self.regexes:
            if r.match(name):
                return True
        return False

    def is_class_lib(self, name):
        if not name:
            return False

        r = False
        if name in self.lib_class_ptns.get("=", []):
            r = True
        elif self.does_class_startwith(name, self.lib_class_ptns.get("startswith", [])):
            r = True
        elif self.does_class_match_regex_ptns(name):
            r = True
        return r

def set_libflag(nodes, rules=None):
    """Mark every node as library or not; returns the number of library classes"""
    lib_checker = lib_classes_checker_t(rules)

    count = 0
    for node in nodes:
        node.libflag = node.LIBNOTLIB
        if lib_checker.is_class_lib(node.class_name):
            node.libflag = node.LIBLIB
            count += 1
            log_debug(f"Marked {node.class_name} as library class")

    if count:
        log_info(f"{count} library classes flagged")
    return count
