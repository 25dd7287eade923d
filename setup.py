"""
ClipDownloader setup script.

Installs the clipdownloader package and the `clipdownloader` command.
On macOS it can also build a native .app bundle with py2app.

Usage:
    # Development install:
    pip install -e .

    # macOS app bundle (alias mode, links to source):
    python3 setup.py py2app -A

    # macOS app bundle (standalone):
    python3 setup.py py2app

The built app will be in the dist/ directory.
"""

import os
import sys
from setuptools import setup

APP = ["main.py"]
APP_NAME = "ClipDownloader"
APP_VERSION = "1.0.0"

DATA_FILES = []

# Check if .icns icon exists (user builds it on macOS)
ICON_FILE = "AppIcon.icns" if os.path.exists("AppIcon.icns") else None

PY2APP_OPTIONS = {
    "argv_emulation": False,
    "plist": {
        "CFBundleName": APP_NAME,
        "CFBundleDisplayName": "Clip Downloader",
        "CFBundleIdentifier": "com.local.clipdownloader",
        "CFBundleVersion": APP_VERSION,
        "CFBundleShortVersionString": APP_VERSION,
        "CFBundlePackageType": "APPL",
        "LSMinimumSystemVersion": "10.15",
        "NSHumanReadableCopyright": "Local use only",
        "LSUIElement": False,
        "LSEnvironment": {
            "PYTHONDONTWRITEBYTECODE": "1",
        },
    },
    "packages": [
        "clipdownloader",
        "clipdownloader.core",
    ],
    "includes": [
        "clipdownloader.core.constants",
        "clipdownloader.core.config",
        "clipdownloader.core.models",
        "clipdownloader.core.error_codes",
        "clipdownloader.core.error_classifier",
        "clipdownloader.core.process_executor",
        "clipdownloader.core.progress_parse",
        "clipdownloader.core.job_orchestrator",
        "clipdownloader.core.validation",
        "clipdownloader.core.filename_template",
        "clipdownloader.core.yt_metadata",
        "clipdownloader.core.download_video",
        "clipdownloader.core.trim_clip",
        "clipdownloader.core.toolchain",
        "clipdownloader.core.cleanup",
        "clipdownloader.core.security_utils",
    ],
    "excludes": [
        "PyQt5", "PyQt6", "PySide2", "PySide6",
        "matplotlib", "numpy", "scipy", "pandas",
        "PIL", "cv2", "torch", "tensorflow",
        "pytest", "unittest",
    ],
    "site_packages": True,
}

# Add icon if available
if ICON_FILE:
    PY2APP_OPTIONS["iconfile"] = ICON_FILE

# py2app is only needed for the app bundle build
extra = {}
if "py2app" in sys.argv:
    extra = {
        "app": APP,
        "data_files": DATA_FILES,
        "options": {"py2app": PY2APP_OPTIONS},
        "setup_requires": ["py2app"],
    }

setup(
    name=APP_NAME,
    version=APP_VERSION,
    description="Local macOS YouTube clip downloader driving yt-dlp and ffmpeg",
    packages=["clipdownloader", "clipdownloader.core"],
    py_modules=["main"],
    install_requires=[],
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "clipdownloader=main:main",
        ],
    },
    **extra,
)
