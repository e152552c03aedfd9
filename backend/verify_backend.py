import sys

import requests

BASE_URL = "http://127.0.0.1:8000/api"


def check(label, response, expected=200):
    ok = response.status_code == expected
    print(f"{'OK  ' if ok else 'FAIL'} {label}: {response.status_code}")
    if not ok:
        print("     Response:", response.text)
    return ok


def test_backend(base_url=BASE_URL):
    try:
        print(f"Testing {base_url}...")
        results = [check("health", requests.get(f"{base_url}/health", timeout=10))]

        res = requests.post(f"{base_url}/students", json={"name": "Smoke Test", "join_date": "2024-01-15"}, timeout=10)
        results.append(check("create student", res, 201))
        student_id = res.json().get("id") if res.ok else None

        if student_id:
            student = requests.get(f"{base_url}/students/{student_id}", timeout=10).json()
            renewal_ok = student.get("renewal_date") == "2024-02-12"
            print(f"{'OK  ' if renewal_ok else 'FAIL'} renewal date: {student.get('renewal_date')}")
            results.append(renewal_ok)

        res = requests.post(f"{base_url}/leads", json={"name": "Mr. Smoke Lead", "phone": "555 0000"}, timeout=10)
        results.append(check("create lead", res, 201))
        lead_id = res.json().get("id") if res.ok else None
        if lead_id:
            res = requests.post(f"{base_url}/leads/{lead_id}/convert", timeout=10)
            results.append(check("convert lead", res))
            print("     Response:", res.json())
            results.append(check("convert again", requests.post(f"{base_url}/leads/{lead_id}/convert", timeout=10), 409))
            requests.delete(f"{base_url}/leads/{lead_id}", timeout=10)
            if res.ok and res.json().get("created"):
                requests.delete(f"{base_url}/students/{res.json()['student_id']}", timeout=10)

        if student_id:
            results.append(check("delete student", requests.delete(f"{base_url}/students/{student_id}", timeout=10)))

        results.append(check("accounting summary", requests.get(f"{base_url}/accounting/summary", timeout=10)))
        return all(results)
    except requests.RequestException as e:
        print(f"Connection Error: {e}")
        return False


if __name__ == "__main__":
    passed = test_backend(sys.argv[1] if len(sys.argv) > 1 else BASE_URL)
    sys.exit(0 if passed else 1)
