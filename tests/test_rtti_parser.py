import pytest

from pyvtexplorer.gcc_rtti import parse_gcc_typeinfo, validate_gcc_typeinfo, extract_class_from_mangled
from pyvtexplorer.msvc_rtti import parse_msvc_col, validate_col, type_name_from_decorated
from pyvtexplorer.rtti_detector import rtti_detector
from pyvtexplorer.rtti_info import CONFIDENCE_VALIDATED, CONFIDENCE_HEURISTIC, CONFIDENCE_NONE
from pyvtexplorer.rtti_parser import rtti_parser, msvc_strategy, itanium_strategy

def parser_for(builder):
    u = builder.utils()
    return rtti_parser(u, rtti_detector(u))

class TestItaniumTypeinfo:

    def test_single_inheritance(self, itanium):
        itanium.typeinfo("Base")
        ti = itanium.typeinfo("Derived", ["Base"])
        info = parse_gcc_typeinfo(itanium.utils(), ti)
        assert info.found
        assert info.confidence == CONFIDENCE_VALIDATED
        assert info.class_name == "Derived"
        assert info.base_names == ["Base"]
        assert not info.has_multiple_inheritance

    def test_no_bases(self, itanium):
        ti = itanium.typeinfo("Root")
        info = parse_gcc_typeinfo(itanium.utils(), ti)
        assert info.found
        assert info.base_classes == []

    def test_multiple_inheritance(self, itanium):
        itanium.typeinfo("A")
        itanium.typeinfo("B")
        ti = itanium.typeinfo("C", ["A", ("B", 16, False)])
        info = parse_gcc_typeinfo(itanium.utils(), ti)
        assert info.base_names == ["A", "B"]
        assert [b.offset for b in info.base_classes] == [0, 16]
        assert info.has_multiple_inheritance
        assert not info.has_virtual_inheritance

    def test_virtual_base(self, itanium):
        itanium.typeinfo("A")
        ti = itanium.typeinfo("D", [("A", 0, True)])
        info = parse_gcc_typeinfo(itanium.utils(), ti)
        assert info.base_classes[0].is_virtual
        assert info.has_virtual_inheritance
        assert not info.has_multiple_inheritance

    def test_32bit(self, itanium32):
        itanium32.typeinfo("A")
        itanium32.typeinfo("B")
        ti = itanium32.typeinfo("C", ["A", ("B", 4, False)])
        info = parse_gcc_typeinfo(itanium32.utils(), ti)
        assert info.base_names == ["A", "B"]
        assert info.base_classes[1].offset == 4

    def test_nested_names(self, itanium):
        itanium.typeinfo("ns::Base")
        ti = itanium.typeinfo("ns::Derived", ["ns::Base"])
        info = parse_gcc_typeinfo(itanium.utils(), ti)
        assert info.class_name == "ns::Derived"
        assert info.base_names == ["ns::Base"]

    def test_unknown_kind_guesses_one_base(self, itanium):
        base_ti = itanium.typeinfo("Base")
        anonymous_kind = itanium.alloc(32)
        ti = itanium.typeinfo("Derived", kind=anonymous_kind)
        itanium.image.write_ptr(ti + 16, base_ti)
        info = parse_gcc_typeinfo(itanium.utils(), ti)
        assert info.found
        assert info.confidence == CONFIDENCE_HEURISTIC
        assert info.base_names == ["Base"]
        assert info.base_classes[0].confidence == CONFIDENCE_HEURISTIC

    def test_kind_from_vtable_symbol(self, itanium):
        base_ti = itanium.typeinfo("Base")
        kind_vt = itanium.alloc(32)
        itanium.image.add_symbol(kind_vt, "_ZTVN10__cxxabiv120__si_class_type_infoE")
        ti = itanium.typeinfo("Derived", kind=kind_vt + 16)
        itanium.image.write_ptr(ti + 16, base_ti)
        info = parse_gcc_typeinfo(itanium.utils(), ti)
        assert info.confidence == CONFIDENCE_VALIDATED
        assert info.base_names == ["Base"]

    def test_unmapped(self, itanium):
        info = parse_gcc_typeinfo(itanium.utils(), 0xdead0000)
        assert not info.found
        assert info.confidence == CONFIDENCE_NONE
        assert info.reason

    def test_validate(self, itanium):
        u = itanium.utils()
        assert validate_gcc_typeinfo(u, itanium.typeinfo("Base"))
        assert not validate_gcc_typeinfo(u, itanium.func())
        assert not validate_gcc_typeinfo(u, 0)

    def test_mangled_name_forms(self, itanium):
        u = itanium.utils()
        assert extract_class_from_mangled(u, "4Base") == "Base"
        assert extract_class_from_mangled(u, "_ZTS4Base") == "Base"
        assert extract_class_from_mangled(u, "N2ns5OuterE") == "ns::Outer"
        assert extract_class_from_mangled(u, "") == ""

class TestMsvcLocator:

    def test_single_base(self, msvc):
        msvc.col("Base")
        col = msvc.col("Derived", ["Base"])
        info = parse_msvc_col(msvc.utils(), col)
        assert info.found
        assert info.confidence == CONFIDENCE_VALIDATED
        assert info.class_name == "Derived"
        assert info.base_names == ["Base"]
        assert not info.has_multiple_inheritance

    def test_three_entry_array_gives_two_bases(self, msvc):
        col = msvc.col("C", ["A", ("B", 8, False)])
        info = parse_msvc_col(msvc.utils(), col)
        assert info.base_names == ["A", "B"]
        assert [b.offset for b in info.base_classes] == [0, 8]
        assert info.has_multiple_inheritance

    def test_virtual_base(self, msvc):
        col = msvc.col("D", [("A", 0, True)])
        info = parse_msvc_col(msvc.utils(), col)
        assert info.base_classes[0].is_virtual
        assert info.has_virtual_inheritance

    def test_32bit(self, msvc32):
        col = msvc32.col("C", ["A", ("B", 4, False)])
        info = parse_msvc_col(msvc32.utils(), col)
        assert info.found
        assert info.base_names == ["A", "B"]

    def test_nested_type_name(self, msvc):
        col = msvc.col("ns::Derived", ["ns::Base"])
        info = parse_msvc_col(msvc.utils(), col)
        assert info.class_name == "ns::Derived"
        assert info.base_names == ["ns::Base"]

    def test_bad_signature(self, msvc):
        col = msvc.col("Base", signature=7)
        info = parse_msvc_col(msvc.utils(), col)
        assert not info.found
        assert "signature" in info.reason
        assert not validate_col(msvc.utils(), col)

    def test_zero_base_count(self, msvc):
        col = msvc.col("Base", count=0)
        assert not parse_msvc_col(msvc.utils(), col).found

    def test_base_count_over_limit(self, msvc):
        col = msvc.col("Base", count=1000)
        assert not parse_msvc_col(msvc.utils(), col).found
        assert not validate_col(msvc.utils(), col)

    def test_truncated_array_keeps_what_resolved(self, msvc):
        col = msvc.col("C", ["A", "B"], count=5)
        info = parse_msvc_col(msvc.utils(), col)
        assert info.found
        assert info.base_names == ["A", "B"]
        assert "truncated" in info.reason

    def test_decorated_names(self, msvc):
        u = msvc.utils()
        assert type_name_from_decorated(u, ".?AVBase@@") == "Base"
        assert type_name_from_decorated(u, ".?AUPoint@@") == "Point"
        assert type_name_from_decorated(u, ".?AVInner@Outer@@") == "Outer::Inner"
        assert type_name_from_decorated(u, ".?AV?$Vector@H@@") == "Vector"

class TestParserFrontEnd:

    def test_itanium_strategy(self, base_derived):
        p = parser_for(base_derived)
        info = p.get_inheritance_info(base_derived.vtables["Derived"], "Derived")
        assert isinstance(p.strategy, itanium_strategy)
        assert info.base_names == ["Base"]

    def test_msvc_strategy(self, msvc):
        msvc.polymorphic("Base", msvc.funcs(1))
        vt = msvc.polymorphic("Derived", msvc.funcs(2), ["Base"])
        p = parser_for(msvc)
        info = p.get_inheritance_info(vt, "Derived")
        assert isinstance(p.strategy, msvc_strategy)
        assert info.base_names == ["Base"]

    def test_memoized(self, base_derived):
        p = parser_for(base_derived)
        vt = base_derived.vtables["Derived"]
        assert p.get_inheritance_info(vt) is p.get_inheritance_info(vt)

    def test_clear_cache(self, base_derived):
        p = parser_for(base_derived)
        vt = base_derived.vtables["Derived"]
        first = p.get_inheritance_info(vt)
        p.clear_cache()
        assert p.strategy is None
        assert p.get_inheritance_info(vt) is not first

    def test_missing_rtti_is_not_found(self, itanium):
        vt = itanium.vtable("Bare", itanium.funcs(2), ti=0)
        info = parser_for(itanium).get_inheritance_info(vt, "Bare")
        assert not info.found
        assert info.class_name == "Bare"
        assert info.base_classes == []

    def test_missing_locator_is_not_found(self, msvc):
        vt = msvc.vtable("Bare", msvc.funcs(2), col=0)
        info = parser_for(msvc).get_inheritance_info(vt, "Bare")
        assert not info.found

class TestAdjacentTypeinfo:
    """GCC often places another class's _ZTI object right before a _ZTV"""

    @pytest.fixture
    def root_after_mid(self, itanium):
        itanium.typeinfo("Top")
        mid_ti = itanium.typeinfo("Mid", ["Top"])
        vt = itanium.polymorphic("Root", itanium.funcs(2))
        itanium.image.write_ptr(vt - 8, mid_ti)
        return vt

    def test_root_keeps_no_bases(self, itanium, root_after_mid):
        info = parser_for(itanium).get_inheritance_info(root_after_mid, "Root")
        assert info.found
        assert info.confidence == CONFIDENCE_VALIDATED
        assert info.class_name == "Root"
        assert info.base_classes == []

    def test_neighbour_ignored_when_own_slot_is_empty(self, itanium, root_after_mid):
        itanium.image.write_ptr(root_after_mid + 8, 0)
        info = parser_for(itanium).get_inheritance_info(root_after_mid, "Root")
        assert not info.found
        assert info.base_classes == []

    def test_scope_and_template_arguments_ignored(self, itanium):
        vt = itanium.polymorphic("Derived", itanium.funcs(1))
        info = parser_for(itanium).get_inheritance_info(vt, "app::Derived<int>")
        assert info.found
