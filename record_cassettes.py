"""
Script to record VCR cassettes with real HTTP interactions.

Run this once with a real portal account to create the cassettes used by
the replay tests in tests/test_live.py.
"""

import subprocess
import sys
from pathlib import Path


def check_credentials():
    """Check if credentials are available."""
    from studyroom.config import LoginDetails

    login = LoginDetails()
    return bool(login.student_id and login.password)


def main():
    """Record VCR cassettes."""
    print("🎬 VCR CASSETTE RECORDING SCRIPT")
    print("=" * 40)

    if not check_credentials():
        print("❌ Missing credentials!")
        print("Please set up studyroom/.env with:")
        print("   SEJONG_STUDENT_ID=your_student_id")
        print("   SEJONG_PASSWORD=your_password")
        return 1

    print("✅ Credentials found")
    print("🔄 Recording real HTTP interactions...")
    print()

    cmd = [
        "uv",
        "run",
        "pytest",
        "tests/test_live.py",
        "-m",
        "live",
        "-v",
        "-s",
    ]

    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as e:
        print(f"❌ Recording failed: {e}")
        return 1

    print()
    print("🎉 Recording completed!")

    cassettes = sorted(Path("tests/cassettes").glob("*.yaml"))
    if cassettes:
        print("📼 Created cassettes:")
        for cassette in cassettes:
            print(f"   - {cassette.name}")
    else:
        print("⚠️  No cassettes found")

    print()
    print("🧪 Now you can run replay tests:")
    print("   uv run pytest tests/test_live.py -v")
    return 0


if __name__ == "__main__":
    sys.exit(main())
