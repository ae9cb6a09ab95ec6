import pytest
import sys
import os

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture
def mock_verify_firebase_token():
    """Mock result of the authentication dependency"""
    return {
        "uid": "alice",
        "email": "alice@example.com",
        "name": "Alice",
        "token": "id-token-alice",
        "decoded_token": {"uid": "alice", "firebase": {"sign_in_provider": "password"}}
    }


@pytest.fixture
def anonymous_user_info():
    """Anonymous user as returned by verify_firebase_token"""
    return {
        "uid": "guest-123",
        "token": "id-token-guest",
        "decoded_token": {"uid": "guest-123", "firebase": {"sign_in_provider": "anonymous"}}
    }
