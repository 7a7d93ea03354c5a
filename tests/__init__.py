"""
Tests package for skyposter

This package contains all unit tests. Nothing here touches the network:
the transport is either mocked at the requests.Session level
(test_transport.py) or replaced wholesale (everything else).

Test organization:
- test_richtext.py: hashtag annotation and UTF-8 byte offsets
- test_media.py: adaptive JPEG encoding under a byte budget
- test_session_store.py: login / refresh / persistence
- test_transport.py: XRPC endpoints, payloads and error mapping
- test_pipeline.py: the upload-then-create submission flow
- test_config.py, test_post.py, test_utils.py: configuration, post model, helpers
- conftest.py: Shared fixtures and test utilities
"""

__version__ = "1.0.0"
