import os

DEFAULT_LIB_RULES = os.path.join(os.path.dirname(os.path.abspath(__file__)), "lib_classes.json")

class vte_config(object):

    max_entries = 2048
    max_consecutive_invalid = 5
    default_vfunc_start = 2
    max_vfunc_search_depth = 4
    max_class_name_length = 512
    max_rtti_string_length = 1024
    max_msvc_bases = 64
    max_itanium_bases = 32
    register_functions = True
    libflag = True
    lib_rules = DEFAULT_LIB_RULES

    def __init__(self, max_entries=2048, max_consecutive_invalid=5, default_vfunc_start=2,
                 max_vfunc_search_depth=4, max_class_name_length=512, max_rtti_string_length=1024,
                 max_msvc_bases=64, max_itanium_bases=32, register_functions=True, libflag=True,
                 lib_rules=None):
        self.max_entries = max_entries
        self.max_consecutive_invalid = max_consecutive_invalid
        self.default_vfunc_start = default_vfunc_start
        self.max_vfunc_search_depth = max_vfunc_search_depth
        self.max_class_name_length = max_class_name_length
        self.max_rtti_string_length = max_rtti_string_length
        self.max_msvc_bases = max_msvc_bases
        self.max_itanium_bases = max_itanium_bases
        self.register_functions = register_functions
        self.libflag = libflag
        self.lib_rules = lib_rules if lib_rules else DEFAULT_LIB_RULES
        self.check_limits()

    def check_limits(self):
        # scans must stay bounded whatever the caller passes in
        if self.max_entries <= 0:
            self.max_entries = 2048
        if self.max_consecutive_invalid <= 0:
            self.max_consecutive_invalid = 5
        if self.default_vfunc_start < 0:
            self.default_vfunc_start = 2
        if self.max_vfunc_search_depth < 0:
            self.max_vfunc_search_depth = 4
        if self.max_class_name_length < 1:
            self.max_class_name_length = 512
        if self.max_rtti_string_length < 1:
            self.max_rtti_string_length = 1024
        self.max_msvc_bases = min(max(self.max_msvc_bases, 1), 64)
        self.max_itanium_bases = min(max(self.max_itanium_bases, 1), 32)
