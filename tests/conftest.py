import pytest

from pyvtexplorer.vte_image import FlatImage
from pyvtexplorer.vte_utils import utils

TYPEINFO_KINDS = {
    "class": "__class_type_info",
    "si": "__si_class_type_info",
    "vmi": "__vmi_class_type_info",
}

def itanium_mangle(name):
    parts = name.split("::")
    if len(parts) == 1:
        return f"{len(name)}{name}"
    return "N" + "".join(f"{len(p)}{p}" for p in parts) + "E"

def msvc_decorate(name):
    return "@".join(reversed(name.split("::")))

class ImageBuilder(object):
    """Bump allocator over a code segment and a data segment"""

    def __init__(self, image, text, data, text_size=0x4000, data_size=0x10000):
        self.image = image
        self.ps = image.ptr_size
        image.add_segment(text, text_size, executable=True, name=".text")
        image.add_segment(data, data_size, name=".rdata")
        self._text = text
        self._data = data
        self._pure = None

    def alloc(self, size):
        addr = self._data
        self._data += (size + 15) & ~15
        return addr

    def func(self, name=None, register=False):
        addr = self._text
        self._text += 0x10
        # push rbp; ret
        self.image.write(addr, b"\x55\xc3")
        if name:
            self.image.add_symbol(addr, name)
        if register:
            self.image.add_function(addr)
        return addr

    def funcs(self, n):
        return [self.func() for _ in range(n)]

    def string(self, s):
        addr = self.alloc(len(s) + 1)
        self.image.write_string(addr, s)
        return addr

    def utils(self):
        return utils(self.image, demangler=self.image, functions=self.image)

class ItaniumImageBuilder(ImageBuilder):
    TEXT = 0x10000
    DATA = 0x20000
    PURE_NAME = "__cxa_pure_virtual"

    def __init__(self, ptr_size=8, demangled=None):
        image = FlatImage(ptr_size=ptr_size, file_format="ELF", demangled=demangled)
        super().__init__(image, self.TEXT, self.DATA)
        self.kinds = {}
        for key, kind in TYPEINFO_KINDS.items():
            vt = self.alloc(4 * self.ps)
            # typeinfo objects point two slots into their class's vtable; the host names
            # that address point so the _ZTV symbols do not show up as classes
            self.kinds[key] = vt + 2 * self.ps
            image.add_symbol(self.kinds[key], f"__cxxabiv1::{kind}")
        self.typeinfos = {}
        self.vtables = {}

    def pure(self):
        if self._pure is None:
            self._pure = self.func(self.PURE_NAME)
        return self._pure

    def typeinfo(self, name, bases=(), vmi=False, kind=None):
        """bases: names or (name, offset, is_virtual) tuples of already built typeinfos"""
        ps = self.ps
        mangled = itanium_mangle(name)
        name_addr = self.string(mangled)
        self.image.add_symbol(name_addr, "_ZTS" + mangled)

        bases = [b if isinstance(b, tuple) else (b, 0, False) for b in bases]
        if kind is None:
            if not bases:
                kind = "class"
            elif len(bases) == 1 and not vmi and bases[0][1] == 0 and not bases[0][2]:
                kind = "si"
            else:
                kind = "vmi"

        if kind == "vmi":
            ti = self.alloc(2 * ps + 8 + len(bases) * 2 * ps)
        else:
            ti = self.alloc(3 * ps)

        self.image.write_ptr(ti, self.kinds[kind] if kind in self.kinds else kind)
        self.image.write_ptr(ti + ps, name_addr)
        if kind == "si":
            self.image.write_ptr(ti + 2 * ps, self.typeinfos[bases[0][0]])
        elif kind == "vmi":
            self.image.write_dword(ti + 2 * ps, 0)
            self.image.write_dword(ti + 2 * ps + 4, len(bases))
            for i, (base, offset, virtual) in enumerate(bases):
                entry = ti + 2 * ps + 8 + i * 2 * ps
                self.image.write_ptr(entry, self.typeinfos[base])
                # public flag plus the virtual bit
                self.image.write_ptr(entry + ps, (offset << 8) | 0x2 | (0x1 if virtual else 0))

        self.image.add_symbol(ti, "_ZTI" + mangled)
        self.typeinfos[name] = ti
        return ti

    def vtable(self, name, funcs, ti=None, symbol=None):
        ps = self.ps
        if ti is None:
            ti = self.typeinfos.get(name, 0)
        pad = 2 * ps
        vt = self.alloc(pad + (2 + len(funcs)) * ps) + pad
        self.image.write_ptr(vt, 0)
        self.image.write_ptr(vt + ps, ti)
        for i, f in enumerate(funcs):
            self.image.write_ptr(vt + (2 + i) * ps, f)
        self.image.add_symbol(vt, symbol or "_ZTV" + itanium_mangle(name))
        self.vtables[name] = vt
        return vt

    def polymorphic(self, name, funcs, bases=(), vmi=False):
        self.typeinfo(name, bases, vmi)
        return self.vtable(name, funcs)

class MsvcImageBuilder(ImageBuilder):
    BASE64 = 0x140000000
    BASE32 = 0x400000
    PURE_NAME = "_purecall"

    def __init__(self, ptr_size=8, rva_meta=False, demangled=None):
        self.base = self.BASE64 if ptr_size == 8 else self.BASE32
        image = FlatImage(ptr_size=ptr_size, image_base=self.base, file_format="PE",
                          demangled=demangled)
        super().__init__(image, self.base + 0x1000, self.base + 0x10000)
        self.rva_meta = rva_meta
        self.tds = {}
        self.cols = {}
        self.vtables = {}

    def pure(self):
        if self._pure is None:
            self._pure = self.func(self.PURE_NAME)
        return self._pure

    def ref(self, addr):
        """COL, CHD, BCA and BCD references: RVAs on x64, absolute on x86"""
        if self.ps == 8:
            return addr - self.base
        return addr

    def type_descriptor(self, name):
        if name in self.tds:
            return self.tds[name]
        decorated = ".?AV" + msvc_decorate(name) + "@@"
        td = self.alloc(2 * self.ps + len(decorated) + 1)
        self.image.write_string(td + 2 * self.ps, decorated)
        self.tds[name] = td
        return td

    def bcd(self, name, mdisp=0, pdisp=-1, vdisp=0, nb_cbs=0):
        td = self.type_descriptor(name)
        bcd = self.alloc(28)
        self.image.write_dword(bcd, self.ref(td))
        self.image.write_dword(bcd + 4, nb_cbs)
        self.image.write_dword(bcd + 8, mdisp)
        self.image.write_dword(bcd + 12, pdisp)
        self.image.write_dword(bcd + 16, vdisp)
        self.image.write_dword(bcd + 20, 0x40)
        return bcd

    def col(self, name, bases=(), attribute=None, signature=None, count=None):
        """bases: the flattened base list, names or (name, mdisp, is_virtual) tuples"""
        bases = [b if isinstance(b, tuple) else (b, 0, False) for b in bases]
        entries = [self.bcd(name)]
        for base, mdisp, virtual in bases:
            entries.append(self.bcd(base, mdisp, 0 if virtual else -1))

        bca = self.alloc(4 * len(entries))
        for i, e in enumerate(entries):
            self.image.write_dword(bca + i * 4, self.ref(e))

        if attribute is None:
            attribute = (0x1 if len(bases) > 1 else 0) | (0x2 if any(b[2] for b in bases) else 0)
        chd = self.alloc(16)
        self.image.write_dword(chd, 0)
        self.image.write_dword(chd + 4, attribute)
        self.image.write_dword(chd + 8, len(entries) if count is None else count)
        self.image.write_dword(chd + 12, self.ref(bca))

        if signature is None:
            signature = 1 if self.ps == 8 else 0
        col = self.alloc(24)
        self.image.write_dword(col, signature)
        self.image.write_dword(col + 12, self.ref(self.type_descriptor(name)))
        self.image.write_dword(col + 16, self.ref(chd))
        if self.ps == 8:
            self.image.write_dword(col + 20, self.ref(col))
        self.cols[name] = col
        return col

    def vtable(self, name, funcs, col=None, symbol=None):
        ps = self.ps
        if col is None:
            col = self.cols.get(name, 0)
        vt = self.alloc((2 + len(funcs)) * ps) + ps
        if col and self.rva_meta:
            self.image.write_dword(vt - ps, col - self.base)
        else:
            self.image.write_ptr(vt - ps, col)
        for i, f in enumerate(funcs):
            self.image.write_ptr(vt + i * ps, f)
        self.image.add_symbol(vt, symbol or "??_7" + msvc_decorate(name) + "@@6B@")
        self.vtables[name] = vt
        return vt

    def polymorphic(self, name, funcs, bases=()):
        self.col(name, bases)
        return self.vtable(name, funcs)

@pytest.fixture
def itanium():
    return ItaniumImageBuilder()

@pytest.fixture
def itanium32():
    return ItaniumImageBuilder(ptr_size=4)

@pytest.fixture
def msvc():
    return MsvcImageBuilder()

@pytest.fixture
def msvc32():
    return MsvcImageBuilder(ptr_size=4)

@pytest.fixture
def base_derived(itanium):
    """Base{f1, f2}; Derived : Base {f1, f3, f4}"""
    f1, f2, f3, f4 = itanium.funcs(4)
    itanium.polymorphic("Base", [f1, f2])
    itanium.polymorphic("Derived", [f1, f3, f4], bases=["Base"])
    itanium.f = (f1, f2, f3, f4)
    return itanium
