"""Runtime PCI driver rebinding with daemon supervision."""
