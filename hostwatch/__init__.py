"""Host resource monitoring agent with threshold alerts and a peer status API"""

__version__ = "1.0.0"
