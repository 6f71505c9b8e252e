"""GKE node and disk cost collection: disks, machine specs, pricing map and collector."""