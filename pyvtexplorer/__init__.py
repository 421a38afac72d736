"""
pyvtexplorer - C++ class hierarchy recovery from vtables and RTTI
Handles Itanium (GCC/Clang) and MSVC images, 32 and 64 bit.
The Binary Ninja host lives in pyvtexplorer.vte_binja and needs binaryninja installed.
"""

from .vtexplorer import VTExplorer
from .vte_image import FlatImage
from .vte_config import vte_config
from .vte_errors import (VTExplorerError, UnknownClassError, SelectionError,
                         NoHierarchyError, AnalysisCancelled)

__version__ = "0.1.0"
