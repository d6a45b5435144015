"""
The MODEL layer contains pure data structures.
It has NO knowledge of the numerical kernels: it describes the furnace,
the material, the torches, the studies and their serialized form.
"""
