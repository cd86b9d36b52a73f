"""Wholesale Service — kg 単価で売る卸売の注文サービス"""
