# -*- coding: utf-8 -*-
"""Define project metadata
"""

__title__ = "s3bin"
__summary__ = "A content-addressed binary artifact cache backed by S3."

__version__ = "0.1.0"

__install_requires__ = ["anyio>=4.0", "boto3>=1.26", "click>=8.1"]
__tests_require__ = ["pytest>=7.0", "tox"]

__license__ = "MIT License"
