"""Core services for the Banana Mart image studio.

Architecture Overview
---------------------
1. **Configuration** (config.py): environment-based settings via Pydantic
   Settings, ``BANANAMART_`` prefix.
2. **Accounts** (account_store.py, accounts.py): JSON-file repository with a
   transactional ``update`` primitive, and the registration/login/metering
   rules on top of it.
3. **Generation** (gateway.py, response_parser.py): one HTTP call per
   generation against an OpenAI-compatible endpoint, and the parser for its
   markdown-embedded image replies.
4. **Pipeline** (pipeline.py, metering.py): single- and two-step
   orchestration, watermarking, and the coupling of image writes to
   account charges.
5. **Support** (imaging.py, image_library.py, transformations.py): Pillow
   helpers, filename-convention storage, and the transformation catalog.
"""
