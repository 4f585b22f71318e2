"""Reading training data, and storing and restoring networks.

**Modules**

`files` : JSON model stores, checkpoints, and pickles
`readers` : Training examples and in-memory data iteration
"""
