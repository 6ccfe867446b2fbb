"""
Browser setup for the render and probe phases.

Downloads the Chromium build Playwright drives. Run once after installing:

    stackprobe-install-browser
"""
import subprocess
import sys


def postinstall():
    """Run `playwright install chromium` with the current interpreter."""
    print("Running 'playwright install chromium'...")
    try:
        result = subprocess.run(
            [sys.executable, "-m", "playwright", "install", "chromium"],
            check=True,
            capture_output=True,
            text=True
        )
        if result.stdout:
            print(result.stdout)
        print("Chromium browser installed successfully.")
    except subprocess.CalledProcessError as e:
        print(f"Error installing Chromium browser for Playwright: {e}", file=sys.stderr)
        if e.stderr:
            print(e.stderr, file=sys.stderr)
        print(
            "Render and probe scans need a browser. Run manually:\n"
            "  python -m playwright install chromium",
            file=sys.stderr
        )
        sys.exit(1)


if __name__ == "__main__":
    postinstall()
