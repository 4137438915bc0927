#!/usr/bin/env python3
"""
MongoDB Initialization Script for Development

Creates the gas alert collections and indexes, and optionally seeds a demo
user with a claimed device so readings posted by that device trigger
notifications.

Usage:
    python scripts/init_mongodb.py
    python scripts/init_mongodb.py --uri mongodb://localhost:27017 --db gas_alerts_dev
    python scripts/init_mongodb.py --seed-device ESP32_DEMO --seed-email you@example.com
"""

import argparse
import os
import sys
from datetime import datetime, timezone

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import CollectionInvalid


def create_collections(db):
    """Create collections with validation schemas."""

    collections_config = {
        'devices': {
            'validator': {
                '$jsonSchema': {
                    'bsonType': 'object',
                    'required': ['device_id'],
                    'properties': {
                        'device_id': {'bsonType': 'string'},
                        'claimed_by': {'bsonType': ['string', 'null']}
                    }
                }
            }
        },
        'users': {
            'validator': {
                '$jsonSchema': {
                    'bsonType': 'object',
                    'required': ['user_id', 'email'],
                    'properties': {
                        'user_id': {'bsonType': 'string'},
                        'email': {'bsonType': 'string'}
                    }
                }
            }
        },
        'sensor_readings': {
            'validator': {
                '$jsonSchema': {
                    'bsonType': 'object',
                    'required': ['device_id', 'sensor_type', 'value', 'created_at'],
                    'properties': {
                        'severity': {'enum': ['normal', 'caution', 'danger']}
                    }
                }
            }
        },
        'notification_settings': {},
        'notification_audit': {
            'validator': {
                '$jsonSchema': {
                    'bsonType': 'object',
                    'required': ['recipient', 'device_id', 'outcome', 'created_at'],
                    'properties': {
                        'outcome': {'enum': ['sent', 'failed', 'blocked']}
                    }
                }
            }
        },
        'notification_slots': {},
    }

    created = []
    existing = []
    for name, options in collections_config.items():
        try:
            db.create_collection(name, **options)
            created.append(name)
            print(f"   Created: {name}")
        except CollectionInvalid:
            existing.append(name)
            print(f"   Exists: {name}")
    return created, existing


def create_indexes(db):
    """Create the indexes the API queries rely on."""

    indexes = {
        'devices': [
            ([('device_id', ASCENDING)], {'unique': True}),
            ([('claimed_by', ASCENDING)], {}),
        ],
        'users': [
            ([('user_id', ASCENDING)], {'unique': True}),
            ([('email', ASCENDING)], {'unique': True}),
        ],
        'sensor_readings': [
            ([('device_id', ASCENDING), ('sensor_type', ASCENDING), ('created_at', DESCENDING)], {}),
            ([('created_at', ASCENDING)], {}),
        ],
        'notification_settings': [
            ([('user_id', ASCENDING)], {'unique': True}),
        ],
        'notification_audit': [
            ([('recipient', ASCENDING), ('device_id', ASCENDING), ('outcome', ASCENDING), ('created_at', DESCENDING)], {}),
            ([('recipient', ASCENDING), ('created_at', DESCENDING)], {}),
        ],
    }

    created_count = 0
    for collection, index_list in indexes.items():
        for index_keys, options in index_list:
            db[collection].create_index(index_keys, **options)
            created_count += 1

    print(f"   Created/verified {created_count} indexes")
    return created_count


def seed_demo(db, device_id: str, email: str):
    """Register a demo user and a device claimed by that user."""
    user_id = email.split("@")[0]
    db.users.update_one(
        {'user_id': user_id},
        {'$set': {'user_id': user_id, 'email': email, 'first_name': 'Demo', 'last_name': 'User'}},
        upsert=True,
    )
    db.devices.update_one(
        {'device_id': device_id},
        {
            '$set': {'device_id': device_id, 'name': f'Demo {device_id}', 'claimed_by': user_id},
            '$setOnInsert': {'registered_at': datetime.now(timezone.utc)},
        },
        upsert=True,
    )
    print(f"   Seeded device {device_id} claimed by {user_id} <{email}>")


def main():
    parser = argparse.ArgumentParser(description='Initialize MongoDB for the Gas Alert API')
    parser.add_argument('--uri', default=os.getenv('MONGODB_URI', 'mongodb://localhost:27017'),
                        help='MongoDB connection URI')
    parser.add_argument('--db', default=os.getenv('MONGODB_DATABASE', 'gas_alerts'),
                        help='Database name')
    parser.add_argument('--seed-device', help='Device id to register for local testing')
    parser.add_argument('--seed-email', default='demo@example.com',
                        help='Email of the demo user claiming --seed-device')
    args = parser.parse_args()

    print("\n" + "=" * 60)
    print("   MongoDB Initialization for Gas Alert API")
    print("   " + datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
    print("=" * 60)
    print(f"\n   URI: {args.uri}")
    print(f"   Database: {args.db}")

    try:
        print("\n[1/3] Connecting to MongoDB...")
        client = MongoClient(args.uri, serverSelectionTimeoutMS=5000, tz_aware=True)
        client.admin.command('ping')
        print("   Connected successfully")

        db = client[args.db]

        print("\n[2/3] Creating collections...")
        created, existing = create_collections(db)
        print(f"   Summary: {len(created)} created, {len(existing)} already existed")

        print("\n[3/3] Creating indexes...")
        create_indexes(db)

        if args.seed_device:
            print("\n[+] Seeding demo data...")
            seed_demo(db, args.seed_device, args.seed_email)

        print("\n" + "=" * 60)
        print("   Initialization Complete!")
        print("=" * 60)
        print()

        client.close()
        return 0

    except Exception as e:
        print(f"\n   Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
