import argparse
import json

import requests


def main() -> None:
    parser = argparse.ArgumentParser(description="Fetch or deliver the monthly project budget report")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--month", default="", help="YYYY-MM; defaults to the current month")
    parser.add_argument("--send", action="store_true", help="email the report instead of printing its data")
    parser.add_argument("--html", action="store_true", help="print the rendered HTML instead of JSON")
    args = parser.parse_args()

    base = args.base_url.rstrip("/")
    params = {"month": args.month} if args.month else {}
    if args.send:
        resp = requests.post(f"{base}/api/reports/trigger", params=params, timeout=120)
    elif args.html:
        resp = requests.get(f"{base}/api/reports/html", params=params, timeout=120)
        print(resp.status_code)
        print(resp.text)
        return
    else:
        resp = requests.get(f"{base}/api/reports/data", params=params, timeout=120)

    print(resp.status_code)
    try:
        print(json.dumps(resp.json(), indent=2))
    except ValueError:
        print(resp.text)


if __name__ == "__main__":
    main()
