def test_add_address_copies_branch(client, db, customer):
    res = client.post("/addresses", headers=customer["headers"], json={
        "address_name": "Office",
        "address_lines": "5 Taramani Link Road",
        "pincode": "600042",
        "latitude": 12.98,
        "longitude": 80.24,
    })

    assert res.status_code == 200, res.text
    addr = res.json()
    assert addr["branch_code"] == "SOUTH"
    assert addr["branch_name"] == "Chennai South"
    assert addr["phone_number"] == customer["user"]["phone_number"]
    assert addr["address_id"] > 1700000000000
    assert len(client.get("/addresses", headers=customer["headers"]).json()) == 2


def test_unserviceable_pincode_is_rejected(client, customer):
    res = client.post("/addresses", headers=customer["headers"], json={"address_lines": "4 Marine Drive", "pincode": "400020"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Sorry, we do not deliver to this pincode yet."


def test_malformed_pincode(client, customer):
    res = client.post("/addresses", headers=customer["headers"], json={"address_lines": "Somewhere", "pincode": "6000"})
    assert res.status_code == 422


def test_update_and_delete_address(client, db, customer):
    headers = customer["headers"]
    res = client.put("/addresses/1700000000000", headers=headers, json={
        "address_name": "Home",
        "address_lines": "14 Gandhi Street",
        "pincode": "600001",
        "phone_number": "+919111111111",
    })
    assert res.status_code == 200
    stored = db["user"].find_one({"uid": customer["user"]["uid"]})["addresses"]
    assert [(a["address_id"], a["address_lines"], a["phone_number"]) for a in stored] == [
        (1700000000000, "14 Gandhi Street", "+919111111111"),
    ]

    assert client.delete("/addresses/1700000000000", headers=headers).status_code == 200
    assert client.get("/addresses", headers=headers).json() == []
    assert client.delete("/addresses/1700000000000", headers=headers).status_code == 404
