"""Google Cloud provider: billing catalog, GCS and GKE collectors, and SKU export to CSV."""