# TabFit/utils/__init__.py
from .mask import PinningPolicy, IndexMap, BuildIndexMap, ResolveInvariantFlags, DescribeIndexMap
from .ffio import PotTableFile, ReadPotTable, WritePotTable
from .configio import Configuration, ReadConfigurations, WriteConfigurations
from .config import FitConfig, LoadFitConfig
