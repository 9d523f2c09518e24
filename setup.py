from setuptools import setup, find_packages
from pathlib import Path

# ===== README.md =====
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

# ===== Version from schema_proxy/version.py =====
version_file = Path(__file__).parent / "schema_proxy/version.py"
version = "0.0.0"  # fallback
if version_file.exists():
    namespace = {}
    with open(version_file, "r", encoding="utf-8") as f:
        exec(f.read(), namespace)
        version = namespace.get("__version__", version)

# ===== Setup =====
setup(
    name="mcp-schema-proxy",
    version=version,
    author="MCP Schema Proxy",
    author_email="noreply@example.com",
    description="MCP SSE proxy that repairs tool input schemas missing type: object",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    zip_safe=False,
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.109.0",
        "uvicorn[standard]>=0.27.0",
        "pydantic>=2.5.0",
        "anyio>=4.0.0",
        "mcp>=1.8.0,<2",
        "click>=8.1.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
            "black>=23.12.0",
            "flake8>=7.0.0",
            "mypy>=1.8.0",
            "httpx>=0.26.0",
        ],
    },
    entry_points={"console_scripts": ["schema-proxy=schema_proxy.cli:main"]},
)
